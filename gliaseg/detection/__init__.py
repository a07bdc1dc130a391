"""
Region detection for the glia segmentation pipeline.

Provides:
- Contour extraction with parent / hole resolution
- Seeded region rendering for debug images
"""

from .contours import (
    RegionLabel,
    ExtractionMode,
    HierarchyRecord,
    ContourExtraction,
    resolve_hierarchy,
    extract_regions,
    ColorGenerator,
    render_regions,
)

__all__ = [
    "RegionLabel",
    "ExtractionMode",
    "HierarchyRecord",
    "ContourExtraction",
    "resolve_hierarchy",
    "extract_regions",
    "ColorGenerator",
    "render_regions",
]
