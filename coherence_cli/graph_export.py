"""Module graph export helpers for DOT and simple standalone HTML outputs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Set

from .graph import ModuleGraph
from .models import DEFAULT, WILDCARD


def _edge_label(names: List[str]) -> str:
    shown = names[:4]
    label = ", ".join(shown)
    if len(names) > len(shown):
        label += f" +{len(names) - len(shown)}"
    return label


def _edge_rows(graph: ModuleGraph) -> List[Dict[str, str]]:
    rows = []
    for (src, dst), edge in graph.edges.items():
        names: List[str] = []
        for record in edge.imports:
            for imported in record.names:
                if imported.name == WILDCARD:
                    label = "*"
                elif imported.name == DEFAULT:
                    label = "default"
                else:
                    label = imported.name
                if label not in names:
                    names.append(label)
        rows.append({"src": src, "dst": dst, "label": _edge_label(names)})
    return rows


def export_dot(graph: ModuleGraph, output_file: Path, focus: str = "") -> None:
    edges = _edge_rows(graph)
    selected = _focused_subgraph(sorted(graph.modules), edges, focus)

    lines = ["digraph Modules {"]
    lines.append("  rankdir=LR;")
    lines.append("  node [shape=box];")

    for path in selected["nodes"]:
        module = graph.modules[path]
        label = f"{_esc(path)}\\n{len(module.exports)} exports"
        lines.append(f'  "{_esc(path)}" [label="{label}"];')

    for edge in selected["edges"]:
        lines.append(f'  "{_esc(edge["src"])}" -> "{_esc(edge["dst"])}" [label="{_esc(edge["label"])}"];')

    lines.append("}")
    output_file.write_text("\n".join(lines) + "\n", encoding="utf-8")


def export_html(graph: ModuleGraph, output_file: Path, focus: str = "") -> None:
    edges = _edge_rows(graph)
    selected = _focused_subgraph(sorted(graph.modules), edges, focus)
    payload = {
        "nodes": [
            {
                "id": path,
                "exports": sorted(graph.modules[path].export_names),
                "lines": graph.modules[path].line_count,
            }
            for path in selected["nodes"]
        ],
        "edges": selected["edges"],
    }
    output_file.write_text(_basic_html_export(payload), encoding="utf-8")


def _basic_html_export(graph_payload: dict) -> str:
    graph_json = json.dumps(graph_payload).replace("</", "<\\/")
    return f"""<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <title>Module Graph</title>
  <style>
    body {{ font-family: ui-monospace, SFMono-Regular, Menlo, monospace; margin: 20px; }}
    #container {{ display: grid; grid-template-columns: 1fr 1fr; gap: 18px; }}
    .panel {{ border: 1px solid #ddd; border-radius: 8px; padding: 10px; }}
    ul {{ list-style: none; padding: 0; margin: 0; }}
    li {{ margin: 4px 0; }}
  </style>
</head>
<body>
  <h1>Module Graph</h1>
  <div id="container">
    <div class="panel">
      <h2>Modules</h2>
      <ul id="nodes"></ul>
    </div>
    <div class="panel">
      <h2>Imports</h2>
      <ul id="edges"></ul>
    </div>
  </div>
  <script>
    const graph = {graph_json};
    const nodesEl = document.getElementById('nodes');
    const edgesEl = document.getElementById('edges');
    graph.nodes.forEach(n => {{
      const li = document.createElement('li');
      li.textContent = `${{n.id}} (${{n.lines}} lines) exports: ${{n.exports.join(', ') || '-'}}`;
      nodesEl.appendChild(li);
    }});
    graph.edges.forEach(e => {{
      const li = document.createElement('li');
      li.textContent = `${{e.src}} --[${{e.label}}]--> ${{e.dst}}`;
      edgesEl.appendChild(li);
    }});
  </script>
</body>
</html>
"""


def _focused_subgraph(nodes: List[str], edges: List[Dict[str, str]], focus: str) -> Dict[str, List]:
    if not focus:
        return {"nodes": nodes, "edges": edges}

    focus_ids = {path for path in nodes if focus in path}
    if not focus_ids:
        return {"nodes": nodes, "edges": edges}

    edge_subset = [e for e in edges if e["src"] in focus_ids or e["dst"] in focus_ids]
    node_subset: Set[str] = set(focus_ids)
    for e in edge_subset:
        node_subset.add(e["src"])
        node_subset.add(e["dst"])
    return {"nodes": sorted(node_subset), "edges": edge_subset}


def _esc(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')
