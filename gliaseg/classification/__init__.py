"""
Nuclei classification by marker overlap.

Usage:
    from gliaseg.classification import classify_nuclei

    result = classify_nuclei(blue_contours, blue_red, blue_green, config)
"""

from .overlap import (
    OverlapResult,
    NucleiClassification,
    coverage_ratio,
    classify_by_overlap,
    classify_nuclei,
)

__all__ = [
    "OverlapResult",
    "NucleiClassification",
    "coverage_ratio",
    "classify_by_overlap",
    "classify_nuclei",
]
