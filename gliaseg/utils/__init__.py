"""
Utility modules for the glia segmentation pipeline.

Provides:
- Configuration management
- Logging utilities
- JSON schema validation (requires pydantic)
- Numpy-aware JSON writing
"""

from .config import (
    DEFAULT_CONFIG,
    DEFAULT_PATHS,
    ChannelConfig,
    ClassificationConfig,
    HistogramConfig,
    PipelineConfig,
    ConfigValidationError,
    load_config,
    save_config,
    validate_config,
    get_config_summary,
    get_default_path,
)

from .logging import (
    get_logger,
    setup_logging,
    log_parameters,
    format_duration,
    ProcessingTimer,
)

from .json_utils import (
    NumpyEncoder,
    sanitize_for_json,
    atomic_json_dump,
)

__all__ = [
    # Config
    "DEFAULT_CONFIG",
    "DEFAULT_PATHS",
    "ChannelConfig",
    "ClassificationConfig",
    "HistogramConfig",
    "PipelineConfig",
    "ConfigValidationError",
    "load_config",
    "save_config",
    "validate_config",
    "get_config_summary",
    "get_default_path",
    # Logging
    "get_logger",
    "setup_logging",
    "log_parameters",
    "format_duration",
    "ProcessingTimer",
    # JSON
    "NumpyEncoder",
    "sanitize_for_json",
    "atomic_json_dump",
]
