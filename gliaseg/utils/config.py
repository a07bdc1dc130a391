"""
Configuration for the glia segmentation pipeline.

Every tunable constant of the pipeline lives here: per-channel enhancement
thresholds, contour extraction modes, coverage-ratio cutoffs for each
classification pairing and the area histogram layout.

Usage:
    from gliaseg.utils.config import load_config, PipelineConfig

    # Load config with defaults (config.json inside a directory or an explicit file)
    config_dict = load_config('/path/to/experiment')

    # Override defaults
    config_dict = load_config('/path/to/config.json', debug=True)

    config = PipelineConfig.from_dict(config_dict)

Environment Variables:
    GLIASEG_RESULTS_DIR: Default results root (default: ./result)
    GLIASEG_DATA_DIR: Default input data root
"""

import copy
import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from gliaseg.utils.json_utils import NumpyEncoder as _NumpyEncoder
from gliaseg.utils.logging import get_logger

logger = get_logger(__name__)


CHANNEL_NAMES = ("blue", "green", "red")
EXTRACTION_MODES = ("external", "ccomp")


DEFAULT_PATHS = {
    "results_dir": os.getenv("GLIASEG_RESULTS_DIR", "result"),
    "data_dir": os.getenv("GLIASEG_DATA_DIR", "data"),
}


def get_default_path(key: str) -> str:
    """
    Get a default path from environment or fallback.

    Args:
        key: Path key name ('results_dir' or 'data_dir')

    Returns:
        Path string, empty string if key not found
    """
    return DEFAULT_PATHS.get(key, "")


# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    # Enhancement and extraction settings per stain
    "channels": {
        "blue": {
            "low_threshold": 50,
            "high_threshold": 240,
            "blur_radius": 1,
            "low_band_high_threshold": 250,
            "saturation_threshold": 250,
            "extraction_mode": "external",
            "min_area": 1.0,
        },
        "green": {
            "low_threshold": 50,
            "high_threshold": 240,
            "blur_radius": 1,
            "low_band_high_threshold": 250,
            "saturation_threshold": 250,
            "extraction_mode": "external",
            "min_area": 1.0,
        },
        "red": {
            "low_threshold": 5,  # Microglia stain has a much lower noise floor
            "high_threshold": 240,
            "blur_radius": 1,
            "low_band_high_threshold": 250,
            "saturation_threshold": 250,
            "extraction_mode": "ccomp",  # Microglial processes enclose background
            "min_area": 1.0,
        },
    },

    # Nuclei classification pairings (nuclei are always taken from blue)
    "classification": {
        "microglial": {
            "partner_channel": "red",
            "coverage_threshold": 0.75,
            "min_perimeter": 10.0,
            "min_points": 5,
        },
        "neural": {
            "partner_channel": "green",
            "coverage_threshold": 0.75,
            "min_perimeter": 10.0,
            "min_points": 5,
        },
    },

    # Microglia area distribution
    "histogram": {
        "bin_count": 21,
        "bin_width": 25,
    },

    # Stack handling
    "layers_per_group": None,  # None merges the whole stack into one group
    "file_extension": "tif",

    # Outputs
    "debug": False,
    "color_seed": 12345,
    "ellipse_thickness": 4,

    # Microglia-neural proximity columns
    "proximity_metrics": False,
    "microglial_roi_factor": 20.0,

    # Batch execution
    "num_workers": 1,
    "image_timeout_s": None,
}


# Validation constraints for each config section
_VALIDATION_RULES: Dict[str, Dict[str, Any]] = {
    "channel": {
        "low_threshold": {"min": 0, "max": 255, "type": int},
        "high_threshold": {"min": 0, "max": 255, "type": int},
        "blur_radius": {"min": 0, "max": 10, "type": int},
        "low_band_high_threshold": {"min": 0, "max": 255, "type": int},
        "saturation_threshold": {"min": 1, "max": 255, "type": int},
        "min_area": {"min": 0.0, "max": 1e9, "type": float},
    },
    "classification": {
        "coverage_threshold": {"min": 0.0, "max": 1.0, "type": float},
        "min_perimeter": {"min": 0.0, "max": 1e6, "type": float},
        "min_points": {"min": 0, "max": 10000, "type": int},
    },
    "histogram": {
        "bin_count": {"min": 1, "max": 1000, "type": int},
        "bin_width": {"min": 1, "max": 1000000, "type": int},
    },
    "general": {
        "layers_per_group": {"min": 1, "max": 99, "type": int},
        "color_seed": {"min": 0, "max": 2**32 - 1, "type": int},
        "ellipse_thickness": {"min": 1, "max": 20, "type": int},
        "microglial_roi_factor": {"min": 0.0, "max": 1000.0, "type": float},
        "num_workers": {"min": 1, "max": 64, "type": int},
        "image_timeout_s": {"min": 0.001, "max": 1e6, "type": float},
    },
}


# =============================================================================
# NAMED CONFIGURATION STRUCTURES
# =============================================================================

def _known_fields(cls: type, values: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only the keys that are dataclass fields of ``cls``."""
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in values.items() if key in names}


@dataclass(frozen=True)
class ChannelConfig:
    """
    Enhancement and extraction parameters for one stain channel.

    Attributes:
        low_threshold: Samples below this are zeroed before inversion.
        high_threshold: Binarization cutoff applied to the inverted, smoothed image.
        blur_radius: Gaussian kernel radius; the kernel is (2r+1) x (2r+1).
        low_band_high_threshold: Binarization cutoff for the low-intensity band.
        saturation_threshold: Low band drops smoothed samples at or above this.
        extraction_mode: 'external' (outer boundaries only) or 'ccomp'
            (outer boundaries plus their immediate holes).
        min_area: Minimum net region area kept by the contour extractor.
    """
    low_threshold: int = 50
    high_threshold: int = 240
    blur_radius: int = 1
    low_band_high_threshold: int = 250
    saturation_threshold: int = 250
    extraction_mode: str = "external"
    min_area: float = 1.0

    @property
    def kernel_size(self) -> Tuple[int, int]:
        size = 2 * self.blur_radius + 1
        return (size, size)


@dataclass(frozen=True)
class ClassificationConfig:
    """
    Coverage-ratio rule for one cell type.

    A nucleus contour is assigned to the cell type when at least
    ``coverage_threshold`` of its pixels fall inside the intersection of the
    nuclear mask and ``partner_channel``.
    """
    partner_channel: str = "red"
    coverage_threshold: float = 0.75
    min_perimeter: float = 10.0
    min_points: int = 5


@dataclass(frozen=True)
class HistogramConfig:
    """Fixed-width area bins; the last bin is an open-ended catch-all."""
    bin_count: int = 21
    bin_width: int = 25


@dataclass(frozen=True)
class PipelineConfig:
    """Complete, validated configuration for one pipeline run."""
    blue: ChannelConfig = field(default_factory=ChannelConfig)
    green: ChannelConfig = field(default_factory=ChannelConfig)
    red: ChannelConfig = field(default_factory=lambda: ChannelConfig(
        low_threshold=5, extraction_mode="ccomp"))
    microglial: ClassificationConfig = field(default_factory=ClassificationConfig)
    neural: ClassificationConfig = field(
        default_factory=lambda: ClassificationConfig(partner_channel="green"))
    histogram: HistogramConfig = field(default_factory=HistogramConfig)
    layers_per_group: Optional[int] = None
    file_extension: str = "tif"
    debug: bool = False
    color_seed: int = 12345
    ellipse_thickness: int = 4
    proximity_metrics: bool = False
    microglial_roi_factor: float = 20.0
    num_workers: int = 1
    image_timeout_s: Optional[float] = None

    def channel(self, name: str) -> ChannelConfig:
        """Return the ChannelConfig for 'blue', 'green' or 'red'."""
        if name not in CHANNEL_NAMES:
            raise KeyError(f"Unknown channel '{name}'. Available: {', '.join(CHANNEL_NAMES)}")
        return getattr(self, name)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "PipelineConfig":
        """Build from a (possibly partial) config dict, filling gaps from DEFAULT_CONFIG."""
        merged = copy.deepcopy(DEFAULT_CONFIG)
        _deep_merge(merged, config)

        channels = {
            name: ChannelConfig(**_known_fields(ChannelConfig, merged["channels"][name]))
            for name in CHANNEL_NAMES
        }
        classification = merged["classification"]
        general = {
            key: value for key, value in _known_fields(cls, merged).items()
            if key not in CHANNEL_NAMES + ("microglial", "neural", "histogram")
        }
        return cls(
            microglial=ClassificationConfig(
                **_known_fields(ClassificationConfig, classification["microglial"])),
            neural=ClassificationConfig(**_known_fields(ClassificationConfig, classification["neural"])),
            histogram=HistogramConfig(**_known_fields(HistogramConfig, merged["histogram"])),
            **channels,
            **general,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to the nested dict layout used by config files."""
        data = asdict(self)
        return {
            "channels": {name: data.pop(name) for name in CHANNEL_NAMES},
            "classification": {
                "microglial": data.pop("microglial"),
                "neural": data.pop("neural"),
            },
            **data,
        }


# =============================================================================
# LOADING / SAVING
# =============================================================================

def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """
    Recursively merge override dict into base dict (in-place).

    For nested dicts, merges keys rather than replacing the entire dict.
    All other values are deep-copied from override.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)


def load_config(
    path: Optional[Union[str, Path]] = None,
    config_filename: str = "config.json",
    **overrides: Any,
) -> Dict[str, Any]:
    """
    Load configuration, merged over DEFAULT_CONFIG.

    Args:
        path: Config JSON file, or a directory containing ``config_filename``.
            None returns the defaults.
        config_filename: Name of config file when ``path`` is a directory
        **overrides: Top-level keys applied after the file

    Returns:
        Dict with merged configuration

    Raises:
        FileNotFoundError: If an explicit file path does not exist
        ConfigValidationError: If the file is not valid JSON
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if path is not None:
        path = Path(path)
        config_path = path / config_filename if path.is_dir() else path

        if not config_path.exists():
            if path.is_dir():
                logger.debug(f"No {config_filename} in {path}, using defaults")
            else:
                raise FileNotFoundError(f"Config file not found: {config_path}")
        else:
            try:
                with open(config_path, 'r') as f:
                    file_config = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigValidationError(f"Could not parse {config_path}: {e}") from e
            if not isinstance(file_config, dict):
                raise ConfigValidationError(f"{config_path}: top level must be an object")
            _deep_merge(config, file_config)
            logger.debug(f"Loaded config from {config_path}")

    _deep_merge(config, overrides)
    return config


def save_config(
    output_dir: Union[str, Path],
    config: Union[Dict[str, Any], PipelineConfig],
    config_filename: str = "config.json"
) -> Path:
    """
    Save configuration to a directory.

    Args:
        output_dir: Directory to write into (created if missing)
        config: Configuration dict or PipelineConfig
        config_filename: Name of config file (default: config.json)

    Returns:
        Path to saved config file
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    if isinstance(config, PipelineConfig):
        config = config.to_dict()

    config_path = output_dir / config_filename
    with open(config_path, 'w') as f:
        json.dump(config, f, cls=_NumpyEncoder, indent=2)

    return config_path


# =============================================================================
# CONFIGURATION VALIDATION
# =============================================================================

class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


def _validate_range(
    value: Any,
    key: str,
    min_val: Union[int, float],
    max_val: Union[int, float],
    expected_type: type,
) -> List[str]:
    """
    Validate a single value is within expected range and type.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []

    # bool is an int subclass; never accept it for numeric fields
    if isinstance(value, bool):
        errors.append(f"{key}: expected {expected_type.__name__}, got bool")
        return errors

    if expected_type == float:
        if not isinstance(value, (int, float)):
            errors.append(f"{key}: expected numeric type, got {type(value).__name__}")
            return errors
    elif not isinstance(value, expected_type):
        errors.append(f"{key}: expected {expected_type.__name__}, got {type(value).__name__}")
        return errors

    if value < min_val or value > max_val:
        errors.append(f"{key}: value {value} out of range [{min_val}, {max_val}]")

    return errors


def _validate_section(
    section: Dict[str, Any],
    rules: Dict[str, Dict[str, Any]],
    prefix: str,
    allow_none: Tuple[str, ...] = (),
) -> List[str]:
    errors = []
    for key, rule in rules.items():
        if key not in section:
            continue
        value = section[key]
        if value is None and key in allow_none:
            continue
        errors.extend(_validate_range(
            value, f"{prefix}{key}", rule["min"], rule["max"], rule["type"]
        ))
    return errors


def validate_config(
    config: Optional[Dict[str, Any]] = None,
    raise_on_error: bool = False,
) -> Dict[str, Union[bool, List[str]]]:
    """
    Validate a configuration dict against expected types and ranges.

    Args:
        config: Config dict (like DEFAULT_CONFIG). If None, validates DEFAULT_CONFIG.
        raise_on_error: If True, raises ConfigValidationError when any check fails.

    Returns:
        Dict with validation results:
            - 'valid': bool, True if all validations passed
            - 'errors': List of error message strings
            - 'warnings': List of warning message strings

    Raises:
        ConfigValidationError: If raise_on_error=True and validation fails

    Example:
        >>> result = validate_config({"histogram": {"bin_count": 0}})
        >>> result['valid']
        False
    """
    errors: List[str] = []
    warnings: List[str] = []

    if config is None:
        config = DEFAULT_CONFIG

    # Channels
    channels = config.get("channels", {})
    for name, channel in channels.items():
        if name not in CHANNEL_NAMES:
            errors.append(f"channels.{name}: unknown channel, expected one of {list(CHANNEL_NAMES)}")
            continue
        errors.extend(_validate_section(channel, _VALIDATION_RULES["channel"], f"channels.{name}."))
        mode = channel.get("extraction_mode")
        if mode is not None and mode not in EXTRACTION_MODES:
            errors.append(f"channels.{name}.extraction_mode: '{mode}' not in {list(EXTRACTION_MODES)}")
        low = channel.get("low_band_high_threshold")
        high = channel.get("high_threshold")
        if isinstance(low, int) and isinstance(high, int) and low < high:
            warnings.append(
                f"channels.{name}: low_band_high_threshold ({low}) below high_threshold "
                f"({high}) widens the low band instead of narrowing it"
            )

    # Classification pairings
    for cell_type, rule in config.get("classification", {}).items():
        errors.extend(_validate_section(
            rule, _VALIDATION_RULES["classification"], f"classification.{cell_type}."
        ))
        partner = rule.get("partner_channel")
        if partner is not None and partner not in CHANNEL_NAMES:
            errors.append(
                f"classification.{cell_type}.partner_channel: '{partner}' not in {list(CHANNEL_NAMES)}"
            )
        min_points = rule.get("min_points")
        if isinstance(min_points, int) and not isinstance(min_points, bool) and min_points < 5:
            warnings.append(
                f"classification.{cell_type}.min_points < 5: "
                "ellipse annotation needs at least 5 points, smaller contours are not drawn"
            )

    # Histogram
    errors.extend(_validate_section(
        config.get("histogram", {}), _VALIDATION_RULES["histogram"], "histogram."
    ))

    # General settings
    errors.extend(_validate_section(
        config, _VALIDATION_RULES["general"], "",
        allow_none=("layers_per_group", "image_timeout_s"),
    ))

    ext = config.get("file_extension")
    if ext is not None and (not isinstance(ext, str) or not ext or ext.startswith(".")):
        errors.append(f"file_extension: expected extension without leading dot, got {ext!r}")

    for flag in ("debug", "proximity_metrics"):
        if flag in config and not isinstance(config[flag], bool):
            errors.append(f"{flag}: expected bool, got {type(config[flag]).__name__}")

    result = {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
    }

    if raise_on_error and errors:
        raise ConfigValidationError(f"Configuration validation failed: {errors[0]}")

    return result


def get_config_summary(
    config: Optional[Dict[str, Any]] = None,
    include_validation: bool = True
) -> str:
    """
    Generate a formatted summary of configuration values.

    Args:
        config: Config dict. If None, uses DEFAULT_CONFIG.
        include_validation: If True, appends validation status to summary.

    Returns:
        Formatted multi-line string with configuration summary.
    """
    if config is None:
        config = DEFAULT_CONFIG

    lines = [
        "=" * 50,
        "Configuration Summary",
        "=" * 50,
        "",
    ]

    lines.append("Channels:")
    for name, channel in config.get("channels", {}).items():
        lines.append(
            f"  {name}: low={channel.get('low_threshold')} high={channel.get('high_threshold')} "
            f"blur_radius={channel.get('blur_radius')} mode={channel.get('extraction_mode')} "
            f"min_area={channel.get('min_area')}"
        )
    lines.append("")

    lines.append("Classification:")
    for cell_type, rule in config.get("classification", {}).items():
        lines.append(
            f"  {cell_type}: blue x {rule.get('partner_channel')} "
            f"coverage >= {rule.get('coverage_threshold')}"
        )
    lines.append("")

    histogram = config.get("histogram", {})
    lines.append("Histogram:")
    lines.append(f"  bin_count: {histogram.get('bin_count')}")
    lines.append(f"  bin_width: {histogram.get('bin_width')}")
    lines.append("")

    lines.append("General:")
    for key in ("layers_per_group", "file_extension", "debug", "color_seed",
                "ellipse_thickness", "proximity_metrics", "num_workers", "image_timeout_s"):
        if key in config:
            lines.append(f"  {key}: {config[key]}")
    lines.append("")

    if include_validation:
        result = validate_config(config)
        lines.append("-" * 50)
        if result["valid"]:
            lines.append("Validation: PASSED")
        else:
            lines.append("Validation: FAILED")
            for error in result["errors"]:
                lines.append(f"  ERROR: {error}")
        for warning in result["warnings"]:
            lines.append(f"  WARNING: {warning}")
        lines.append("")

    return "\n".join(lines)
