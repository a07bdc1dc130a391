"""
Coverage-ratio classification of nuclei contours.

A nucleus is attributed to a cell type when most of its own pixels also lie
inside the intersection of the nuclear mask with that cell type's marker:

    coverage = |contour AND intersection| / |contour|

Nuclei are classified in two stages: microglial (blue x red) first, then
neural (blue x green) among the nuclei left over.

Usage:
    from gliaseg.classification.overlap import classify_nuclei

    result = classify_nuclei(blue_contours, blue_red, blue_green, config)
    print(result.counts())
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import cv2
import numpy as np

from gliaseg.utils.config import ClassificationConfig, PipelineConfig
from gliaseg.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class OverlapResult:
    """Contours split into the target cell type and everything else."""
    target: List[np.ndarray] = field(default_factory=list)
    other: List[np.ndarray] = field(default_factory=list)


@dataclass
class NucleiClassification:
    """Outcome of the microglial / neural cascade over all nuclei."""
    microglial: List[np.ndarray] = field(default_factory=list)
    neural: List[np.ndarray] = field(default_factory=list)
    other: List[np.ndarray] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.microglial) + len(self.neural) + len(self.other)

    def counts(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "microglial": len(self.microglial),
            "neural": len(self.neural),
            "other": len(self.other),
        }


def is_noise_contour(contour: np.ndarray, rule: ClassificationConfig) -> bool:
    """True when a contour is too short or has too few points to classify."""
    if len(contour) < rule.min_points:
        return True
    return cv2.arcLength(contour, True) < rule.min_perimeter


def rasterize_contour(contour: np.ndarray, shape) -> np.ndarray:
    """Fill a single contour into a fresh uint8 mask of ``shape``."""
    drawing = np.zeros(shape[:2], dtype=np.uint8)
    cv2.drawContours(drawing, [contour], -1, 255, thickness=cv2.FILLED, lineType=cv2.LINE_8)
    return drawing


def coverage_ratio(contour: np.ndarray, reference_mask: np.ndarray) -> Optional[float]:
    """
    Fraction of a contour's rasterized pixels that are set in ``reference_mask``.

    Returns:
        Ratio in [0, 1], or None when the contour rasterizes to zero pixels
    """
    drawing = rasterize_contour(contour, reference_mask.shape)
    count_before = cv2.countNonZero(drawing)
    if count_before == 0:
        return None

    reference = reference_mask
    if reference.dtype != np.uint8:
        reference = (reference > 0).astype(np.uint8) * 255
    count_after = cv2.countNonZero(cv2.bitwise_and(drawing, reference))
    return count_after / count_before


def classify_by_overlap(
    contours: Sequence[np.ndarray],
    intersection_mask: np.ndarray,
    rule: ClassificationConfig,
) -> OverlapResult:
    """
    Split contours by their coverage of an intersection mask.

    Noise contours (short perimeter or few points) and contours that
    rasterize to nothing go to ``other`` without a ratio being used.

    Args:
        contours: Candidate contours (input order is preserved in each bucket)
        intersection_mask: Precomputed AND of the nuclear and partner masks
        rule: Coverage threshold and noise limits

    Returns:
        OverlapResult
    """
    result = OverlapResult()
    for contour in contours:
        if is_noise_contour(contour, rule):
            result.other.append(contour)
            continue

        ratio = coverage_ratio(contour, intersection_mask)
        if ratio is None or ratio < rule.coverage_threshold:
            result.other.append(contour)
        else:
            result.target.append(contour)
    return result


def classify_nuclei(
    nuclei_contours: Sequence[np.ndarray],
    blue_red_intersection: np.ndarray,
    blue_green_intersection: np.ndarray,
    config: Optional[PipelineConfig] = None,
) -> NucleiClassification:
    """
    Classify nuclei as microglial, neural or other.

    Args:
        nuclei_contours: All contours of the merged nuclear (blue) mask
        blue_red_intersection: AND of the merged blue and red masks
        blue_green_intersection: AND of the merged blue and green masks
        config: Pipeline configuration (defaults if None)

    Returns:
        NucleiClassification whose total equals len(nuclei_contours)
    """
    if config is None:
        config = PipelineConfig()

    microglial = classify_by_overlap(nuclei_contours, blue_red_intersection, config.microglial)
    neural = classify_by_overlap(microglial.other, blue_green_intersection, config.neural)

    result = NucleiClassification(
        microglial=microglial.target,
        neural=neural.target,
        other=neural.other,
    )
    logger.debug(f"Nuclei classification: {result.counts()}")
    return result
