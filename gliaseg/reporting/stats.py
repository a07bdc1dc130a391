"""
Summary statistics for segmented regions.

- Area histogram: net areas of accepted regions bucketed into fixed-width
  bins; the last bin collects every area beyond the others.
- Proximity metrics: how many neural nuclei lie within a microglial
  cell's neighbourhood, summarised as mean and standard deviation.
"""

import math
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from gliaseg.detection.contours import ContourExtraction, RegionLabel
from gliaseg.utils.config import HistogramConfig


def round_half_away(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(Decimal(float(value)).to_integral_value(rounding=ROUND_HALF_UP))


@dataclass
class AreaHistogram:
    """
    Fixed-width area distribution.

    Attributes:
        counts: One counter per bin
        total: Number of binned regions (always sum(counts))
        bin_width: Width of each bin in area units
    """
    counts: List[int]
    total: int = 0
    bin_width: int = 25

    @property
    def bin_count(self) -> int:
        return len(self.counts)

    def bin_labels(self, quantity: str = "area") -> List[str]:
        """Column labels, e.g. '0 <= area < 25', ..., 'area >= 500'."""
        labels = [
            f"{i * self.bin_width} <= {quantity} < {(i + 1) * self.bin_width}"
            for i in range(self.bin_count - 1)
        ]
        labels.append(f"{quantity} >= {(self.bin_count - 1) * self.bin_width}")
        return labels


def bin_index(area: float, config: HistogramConfig) -> int:
    """Bin of one area; areas past the last bin clamp into it."""
    rounded = max(round_half_away(area), 0)
    return min(rounded // config.bin_width, config.bin_count - 1)


def bin_area_values(
    areas: Iterable[float],
    config: Optional[HistogramConfig] = None,
) -> AreaHistogram:
    """Bucket raw area values."""
    if config is None:
        config = HistogramConfig()

    counts = [0] * config.bin_count
    for area in areas:
        counts[bin_index(area, config)] += 1
    return AreaHistogram(counts=counts, total=sum(counts), bin_width=config.bin_width)


def bin_areas(
    extraction: ContourExtraction,
    config: Optional[HistogramConfig] = None,
) -> AreaHistogram:
    """
    Histogram the net areas of the accepted (PARENT) regions of an extraction.

    Args:
        extraction: Output of the contour extractor for one channel
        config: Bin layout (21 bins of width 25 by default)

    Returns:
        AreaHistogram whose total equals the number of PARENT labels
    """
    areas = (
        extraction.areas[i]
        for i, label in enumerate(extraction.labels)
        if label == RegionLabel.PARENT
    )
    return bin_area_values(areas, config)


# =============================================================================
# MICROGLIA-NEURAL PROXIMITY
# =============================================================================

@dataclass
class ProximityStats:
    """Neural nuclei per microglial neighbourhood."""
    mean: float = 0.0
    std: float = 0.0
    roi_radius: float = 0.0
    counts: List[int] = field(default_factory=list)


def contour_centroid(contour: np.ndarray) -> Optional[Tuple[float, float]]:
    """Centroid (x, y) from binary image moments, None for degenerate contours."""
    mu = cv2.moments(contour, True)
    if mu["m00"] == 0:
        return None
    return (mu["m10"] / mu["m00"], mu["m01"] / mu["m00"])


def contour_diameter(contour: np.ndarray) -> float:
    """Diagonal of the minimum-area bounding rectangle."""
    (_, _), (width, height), _ = cv2.minAreaRect(contour)
    return float(math.hypot(width, height))


def proximity_metrics(
    microglial_contours: Sequence[np.ndarray],
    neural_contours: Sequence[np.ndarray],
    roi_factor: float = 20.0,
) -> ProximityStats:
    """
    Count neural nuclei around each microglial nucleus.

    The neighbourhood radius is ``roi_factor * mean_diameter / 2``, where the
    mean diameter is taken over all microglial nuclei.

    Args:
        microglial_contours: Contours classified as microglial
        neural_contours: Contours classified as neural
        roi_factor: Neighbourhood size in microglial diameters

    Returns:
        ProximityStats; all zeros when there are no microglial nuclei
    """
    microglial = []
    for contour in microglial_contours:
        centroid = contour_centroid(contour)
        if centroid is not None:
            microglial.append((centroid, contour_diameter(contour)))
    if not microglial:
        return ProximityStats()

    neural_centroids = [contour_centroid(c) for c in neural_contours]
    neural = np.array(
        [c for c in neural_centroids if c is not None], dtype=np.float64
    ).reshape(-1, 2)

    mean_diameter = float(np.mean([d for _, d in microglial]))
    roi_radius = roi_factor * mean_diameter / 2

    counts = []
    for centroid, _ in microglial:
        if len(neural) == 0:
            counts.append(0)
            continue
        distances = np.linalg.norm(neural - np.asarray(centroid), axis=1)
        counts.append(int(np.count_nonzero(distances <= roi_radius)))

    return ProximityStats(
        mean=float(np.mean(counts)),
        std=float(np.std(counts)),
        roi_radius=roi_radius,
        counts=counts,
    )


# =============================================================================
# PER-IMAGE METRICS
# =============================================================================

@dataclass
class ImageMetrics:
    """
    Everything written to the metrics table for one image / layer group.

    Attributes:
        image_id: Row identity (image id, with a group suffix for multi-group stacks)
        microglial_nuclei: Nuclei classified as microglial
        neural_nuclei: Nuclei classified as neural
        other_nuclei: Remaining nuclei
        microglia_histogram: Area histogram of accepted microglia regions
        proximity: Proximity summary, present when enabled
        layers: 1-based depth indices merged into this row
    """
    image_id: str
    microglial_nuclei: int
    neural_nuclei: int
    other_nuclei: int
    microglia_histogram: AreaHistogram
    proximity: Optional[ProximityStats] = None
    layers: List[int] = field(default_factory=list)

    @property
    def total_nuclei(self) -> int:
        return self.microglial_nuclei + self.neural_nuclei + self.other_nuclei

    @property
    def microglia_count(self) -> int:
        return self.microglia_histogram.total

    def to_row(self, include_proximity: bool = False) -> List:
        """Values in metrics table column order."""
        row = [
            self.image_id,
            self.total_nuclei,
            self.microglial_nuclei,
            self.neural_nuclei,
            self.other_nuclei,
        ]
        if include_proximity:
            proximity = self.proximity or ProximityStats()
            row.extend([proximity.mean, proximity.std])
        row.append(self.microglia_count)
        row.extend(self.microglia_histogram.counts)
        return row
