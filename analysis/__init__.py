"""
Analysis package for the Lead Testing Tract Maps pipeline

Join-and-render stage: joins tract records onto boundary vertices and renders
the choropleth image.
"""

from .map_lead_testing import (
    RenderSpec,
    TractPart,
    build_lead_map,
    build_tract_parts,
    draw_choropleth,
    export_map,
    fill_colors,
    join_records,
    render_choropleth,
    resolve_colormap,
    resolve_scale_limits,
)

__all__ = [
    "RenderSpec",
    "TractPart",
    "build_lead_map",
    "build_tract_parts",
    "draw_choropleth",
    "export_map",
    "fill_colors",
    "join_records",
    "render_choropleth",
    "resolve_colormap",
    "resolve_scale_limits",
]
