"""
I/O operations for the glia segmentation pipeline.

Provides:
- Z-stack loading from per-layer image files
- Metrics table writing
- Output image rendering
"""

from .stack_loader import (
    StackLoadError,
    ImageStack,
    discover_layers,
    load_stack,
    read_manifest,
)

from .metrics_writer import (
    MetricsWriter,
    metrics_header,
)

from .rendering import (
    write_image,
    flattened_composite,
    classification_composite,
    write_debug_artifacts,
)

__all__ = [
    "StackLoadError",
    "ImageStack",
    "discover_layers",
    "load_stack",
    "read_manifest",
    "MetricsWriter",
    "metrics_header",
    "write_image",
    "flattened_composite",
    "classification_composite",
    "write_debug_artifacts",
]
