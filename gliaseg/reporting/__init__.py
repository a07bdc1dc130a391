"""
Summary statistics written to the metrics table.
"""

from .stats import (
    AreaHistogram,
    ProximityStats,
    ImageMetrics,
    bin_areas,
    bin_area_values,
    proximity_metrics,
)

__all__ = [
    "AreaHistogram",
    "ProximityStats",
    "ImageMetrics",
    "bin_areas",
    "bin_area_values",
    "proximity_metrics",
]
