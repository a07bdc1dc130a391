"""
Processing pipeline components.

Provides:
- Per-image pipeline (enhance, merge, extract, classify, bin, render)
- Batch processing over a manifest
"""

from .pipeline import (
    ImageMetrics,
    process_layer_group,
    process_image,
)

from .batch import (
    ImageJob,
    BatchProcessor,
    BatchResult,
    ImageTimeoutError,
)

__all__ = [
    "ImageMetrics",
    "process_layer_group",
    "process_image",
    "ImageJob",
    "BatchProcessor",
    "BatchResult",
    "ImageTimeoutError",
]
