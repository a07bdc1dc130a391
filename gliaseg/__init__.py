"""
Glia segmentation package.

Detects, classifies and measures microglial and neural cells in
three-channel confocal z-stacks (blue: nuclei, green: neurons,
red: microglia).

Usage:
    from gliaseg.io import load_stack, read_manifest
    from gliaseg.preprocessing import enhance_channel, merge_layers
    from gliaseg.detection import extract_regions
    from gliaseg.classification import classify_nuclei
    from gliaseg.processing import BatchProcessor, process_image
    from gliaseg.utils import get_logger, setup_logging, load_config
"""

# Version
__version__ = "0.1.0"

# Submodules are imported explicitly to keep cv2 out of light imports:
#   from gliaseg.utils.logging import get_logger

__all__ = [
    "classification",
    "detection",
    "io",
    "preprocessing",
    "processing",
    "reporting",
    "utils",
]
