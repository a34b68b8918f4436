"""Coherence CLI: static dependency coherence checks for JS/TS source trees."""

__version__ = "0.4.0"
