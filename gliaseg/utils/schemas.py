"""
JSON schema validation for the files the pipeline reads and writes.

Uses Pydantic for validation with clear error messages.

Usage:
    from gliaseg.utils.schemas import (
        validate_config_file,
        validate_batch_results_file,
        infer_and_validate,
    )

    config = validate_config_file("/path/to/config.json")
    results = validate_batch_results_file("/path/to/result/batch_results.json")
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


# =============================================================================
# Configuration Schema
# =============================================================================

class ChannelSchema(BaseModel):
    """Per-channel enhancement and extraction settings."""
    model_config = ConfigDict(extra="forbid")

    low_threshold: Optional[int] = Field(None, ge=0, le=255)
    high_threshold: Optional[int] = Field(None, ge=0, le=255)
    blur_radius: Optional[int] = Field(None, ge=0, le=10)
    low_band_high_threshold: Optional[int] = Field(None, ge=0, le=255)
    saturation_threshold: Optional[int] = Field(None, ge=1, le=255)
    extraction_mode: Optional[Literal["external", "ccomp"]] = None
    min_area: Optional[float] = Field(None, ge=0)


class ClassificationSchema(BaseModel):
    """Coverage-ratio rule for one cell type."""
    model_config = ConfigDict(extra="forbid")

    partner_channel: Optional[Literal["blue", "green", "red"]] = None
    coverage_threshold: Optional[float] = Field(None, ge=0.0, le=1.0)
    min_perimeter: Optional[float] = Field(None, ge=0)
    min_points: Optional[int] = Field(None, ge=0)


class HistogramSchema(BaseModel):
    """Area histogram layout."""
    model_config = ConfigDict(extra="forbid")

    bin_count: Optional[int] = Field(None, ge=1)
    bin_width: Optional[int] = Field(None, ge=1)


class ConfigFile(BaseModel):
    """Schema for config.json files (every key optional, defaults fill gaps)."""
    model_config = ConfigDict(extra="allow")

    channels: Optional[Dict[Literal["blue", "green", "red"], ChannelSchema]] = None
    classification: Optional[Dict[Literal["microglial", "neural"], ClassificationSchema]] = None
    histogram: Optional[HistogramSchema] = None
    layers_per_group: Optional[int] = Field(None, ge=1, le=99)
    file_extension: Optional[str] = None
    debug: Optional[bool] = None
    color_seed: Optional[int] = Field(None, ge=0)
    ellipse_thickness: Optional[int] = Field(None, ge=1)
    proximity_metrics: Optional[bool] = None
    microglial_roi_factor: Optional[float] = Field(None, ge=0)
    num_workers: Optional[int] = Field(None, ge=1)
    image_timeout_s: Optional[float] = Field(None, gt=0)


# =============================================================================
# Batch Results Schema
# =============================================================================

class ImageJobRecord(BaseModel):
    """One processed (or failed) image in batch_results.json."""
    model_config = ConfigDict(extra="allow")

    image_id: str
    status: Literal["pending", "processing", "completed", "failed"]
    error: Optional[str] = None
    groups_processed: int = Field(0, ge=0)
    processing_time_seconds: float = Field(0.0, ge=0)


class BatchResultsFile(BaseModel):
    """Schema for batch_results.json written at the end of a run."""
    model_config = ConfigDict(extra="allow")

    total_images: int = Field(..., ge=0)
    completed: int = Field(..., ge=0)
    failed: int = Field(..., ge=0)
    rows_written: int = Field(0, ge=0)
    total_time_seconds: float = Field(0.0, ge=0)
    metrics_path: Optional[str] = None
    error_log_path: Optional[str] = None
    images: List[ImageJobRecord] = Field(default_factory=list)
    timestamp: Optional[str] = None

    @model_validator(mode='after')
    def check_totals(self) -> "BatchResultsFile":
        """Completed plus failed never exceeds the number of images."""
        if self.completed + self.failed > self.total_images:
            raise ValueError(
                f"completed ({self.completed}) + failed ({self.failed}) "
                f"exceeds total_images ({self.total_images})"
            )
        return self


# =============================================================================
# Validation Functions
# =============================================================================

def validate_json_file(
    file_path: Union[str, Path],
    schema: type[BaseModel],
    raise_on_error: bool = True
) -> Optional[BaseModel]:
    """
    Validate a JSON file against a schema.

    Args:
        file_path: Path to JSON file
        schema: Pydantic model class to validate against
        raise_on_error: If True, raise exception on validation error

    Returns:
        Validated model instance, or None if validation fails and raise_on_error=False
    """
    file_path = Path(file_path)

    if not file_path.exists():
        if raise_on_error:
            raise FileNotFoundError(f"File not found: {file_path}")
        return None

    try:
        with open(file_path, 'r') as f:
            data = json.load(f)
        return schema.model_validate(data)

    except json.JSONDecodeError as e:
        if raise_on_error:
            raise ValueError(f"Invalid JSON in {file_path}: {e}") from e
        return None

    except ValidationError as e:
        if raise_on_error:
            raise ValueError(f"Validation failed for {file_path}: {e}") from e
        return None


def validate_config_file(
    file_path: Union[str, Path],
    raise_on_error: bool = True
) -> Optional[ConfigFile]:
    """Validate a config.json file."""
    return validate_json_file(file_path, ConfigFile, raise_on_error)


def validate_batch_results_file(
    file_path: Union[str, Path],
    raise_on_error: bool = True
) -> Optional[BatchResultsFile]:
    """Validate a batch_results.json file."""
    return validate_json_file(file_path, BatchResultsFile, raise_on_error)


def infer_and_validate(
    file_path: Union[str, Path],
    raise_on_error: bool = True
) -> Optional[BaseModel]:
    """
    Infer schema type from filename and validate.

    Args:
        file_path: Path to JSON file
        raise_on_error: If True, raise exception on validation error

    Returns:
        Validated model instance
    """
    file_path = Path(file_path)
    name = file_path.name.lower()

    if "batch" in name or "result" in name:
        return validate_batch_results_file(file_path, raise_on_error)
    return validate_config_file(file_path, raise_on_error)
