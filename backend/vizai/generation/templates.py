"""Deterministic payload builders shared by the mock generator and fallbacks.

Every builder here is pure: same inputs, same output, no I/O, no clock, no
randomness. Outputs conform to the step schemas in schemas.step_payloads.
"""

from typing import Any

DEFAULT_METAPHORS: list[dict[str, Any]] = [
    {
        "id": "organic-forest-1",
        "title": "Data Forest",
        "description": "Your data grows like trees in an enchanted forest, each branch representing connections",
        "category": "Organic",
        "innovation_score": 8.5,
        "color_palette": ["#2D5F3F", "#8FBC8F", "#F0E68C", "#DEB887", "#8B4513"],
        "d3_strategy": "Force-directed tree layout with organic curves",
    },
    {
        "id": "geometric-crystal-1",
        "title": "Crystal Matrix",
        "description": "Data points crystallize into geometric patterns, revealing hidden structures",
        "category": "Geometric",
        "innovation_score": 7.8,
        "color_palette": ["#4B0082", "#8A2BE2", "#9370DB", "#BA55D3", "#DDA0DD"],
        "d3_strategy": "Hexagonal binning with tessellation",
    },
    {
        "id": "flow-river-1",
        "title": "Data Rivers",
        "description": "Information flows like rivers converging and diverging through time",
        "category": "Flow",
        "innovation_score": 9.2,
        "color_palette": ["#0077BE", "#00A8E8", "#00C9FF", "#90E0EF", "#CAF0F8"],
        "d3_strategy": "Sankey diagram with flowing animations",
    },
]


def default_metaphors() -> list[dict[str, Any]]:
    # Copies, so callers can never mutate the module constant.
    return [dict(m, color_palette=list(m["color_palette"])) for m in DEFAULT_METAPHORS]


def describe_dataset(row_count: int, columns: list[str], column_count: int = 0) -> str:
    count = column_count or len(columns)
    return (
        f"Dataset with {row_count} rows and {count} columns"
        + (f" ({', '.join(columns[:8])}{', ...' if len(columns) > 8 else ''})" if columns else "")
        + "."
    )


def build_analysis_payload(
    row_count: int,
    columns: list[str],
    column_count: int = 0,
    with_patterns: bool = True,
) -> dict[str, Any]:
    """Analysis payload derived only from the input descriptor."""
    profiles = {
        name: {"detected_type": "unknown", "null_percentage": 0, "quality_flags": []}
        for name in columns
    }
    patterns: list[dict[str, Any]] = []
    if with_patterns and len(columns) >= 2:
        patterns = [
            {
                "type": "correlation",
                "description": "Candidate relationship between the first two columns",
                "strength": 0.5,
                "columns": columns[:2],
            },
            {
                "type": "distribution",
                "description": f"Value distribution of {columns[0]}",
                "strength": 0.5,
                "columns": columns[:1],
            },
        ]
    return {
        "column_profiles": profiles,
        "patterns": patterns,
        "metaphors": default_metaphors(),
        "compact_summary": describe_dataset(row_count, columns, column_count),
    }


_CODE_TEMPLATES = {
    "Flow": """// {title} - Flow Visualization
(function() {{
  const width = 1200, height = 800;
  const svg = d3.select('#viz-container').append('svg')
    .attr('width', width).attr('height', height);
  const keys = {keys};
  const x = d3.scalePoint().domain(keys).range([100, width - 100]);
  svg.selectAll('.flow-path').data(keys).enter().append('path')
    .attr('class', 'flow-path')
    .attr('d', (d, i) => `M${{x(d)}},${{300 + i * 40}} Q${{width / 2}},250 ${{width - 100}},400`)
    .attr('fill', 'none').attr('stroke', '{c0}').attr('stroke-width', 24)
    .attr('opacity', 0).transition().duration(1500).attr('opacity', 0.7);
  svg.append('text').attr('x', width / 2).attr('y', 40).attr('text-anchor', 'middle')
    .style('fill', '{c0}').text('{title}');
}})();
""",
    "Geometric": """// {title} - Geometric Visualization
(function() {{
  const width = 1200, height = 800, r = 30;
  const svg = d3.select('#viz-container').append('svg')
    .attr('width', width).attr('height', height);
  const rows = (window.vizData || []).slice(0, 40);
  const color = d3.scaleLinear().domain([0, rows.length || 1]).range(['{c0}', '{c2}']);
  const hex = (cx, cy) => d3.range(6).map(i => [cx + r * Math.cos(Math.PI / 3 * i), cy + r * Math.sin(Math.PI / 3 * i)]).join(' ');
  svg.selectAll('.hexagon').data(rows).enter().append('polygon')
    .attr('class', 'hexagon')
    .attr('points', (d, i) => hex(200 + (i % 8) * r * 1.8, 200 + Math.floor(i / 8) * r * 1.6))
    .attr('fill', (d, i) => color(i)).attr('stroke', '{c1}')
    .attr('opacity', 0).transition().duration(1000).delay((d, i) => i * 50).attr('opacity', 0.8);
  svg.append('text').attr('x', width / 2).attr('y', 40).attr('text-anchor', 'middle')
    .style('fill', '{c0}').text('{title}');
}})();
""",
    "Organic": """// {title} - Organic Visualization
(function() {{
  const width = 1200, height = 800;
  const svg = d3.select('#viz-container').append('svg')
    .attr('width', width).attr('height', height);
  const tree = {{name: 'root', children: {keys}.map(k => ({{name: k}}))}};
  const root = d3.hierarchy(tree);
  d3.tree().size([width - 120, height - 160])(root);
  const g = svg.append('g').attr('transform', 'translate(60,80)');
  g.selectAll('.link').data(root.links()).enter().append('path')
    .attr('d', d3.linkVertical().x(d => d.x).y(d => d.y))
    .attr('fill', 'none').attr('stroke', '{c1}').attr('stroke-width', 2);
  g.selectAll('circle').data(root.descendants()).enter().append('circle')
    .attr('cx', d => d.x).attr('cy', d => d.y).attr('r', 0).attr('fill', '{c0}')
    .transition().duration(1000).attr('r', 8);
  svg.append('text').attr('x', width / 2).attr('y', 40).attr('text-anchor', 'middle')
    .style('fill', '{c0}').text('{title}');
}})();
""",
}


def build_visualization_payload(metaphor: dict[str, Any], columns: list[str]) -> dict[str, Any]:
    """Template D3 code for *metaphor*, picked by its category."""
    category = metaphor.get("category")
    template = _CODE_TEMPLATES.get(category, _CODE_TEMPLATES["Organic"])
    palette = list(metaphor.get("color_palette") or DEFAULT_METAPHORS[0]["color_palette"])
    while len(palette) < 3:
        palette.append(palette[-1])
    title = str(metaphor.get("title") or "Visualization").replace("'", "")
    keys = [str(c).replace("'", "") for c in columns[:6]] or ["value"]
    code = template.format(
        title=title,
        c0=palette[0],
        c1=palette[1],
        c2=palette[2],
        keys="[" + ", ".join(f"'{k}'" for k in keys) + "]",
    )
    return {
        "metaphor_id": str(metaphor.get("id") or "unknown"),
        "title": title,
        "code": code,
        "libraries": ["d3@7"],
    }
