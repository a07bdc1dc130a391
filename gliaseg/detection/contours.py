"""
Hierarchical contour extraction with hole-aware net areas.

Regions are found with ``cv2.findContours``. Stains whose structures never
enclose background use RETR_EXTERNAL; stains whose cells wrap around
background islands use RETR_CCOMP, which reports every outer boundary
together with its immediate holes.

The hierarchy is kept as a flat array of records with integer links
(next sibling, previous sibling, first child, parent), exactly as OpenCV
reports it, so sibling and child walks stay O(1) per step.

Labelling rules for each external contour ``i`` (ascending index order):
1. Outer area below ``min_area``: skipped, label stays INVALID.
2. Walk the child list of ``i``; every hole with non-zero area is collected
   and its area summed.
3. Net area = outer area - hole area. If it still meets ``min_area`` then
   ``i`` becomes PARENT with that net area and each collected hole becomes
   CHILD. Otherwise ``i`` and its holes stay INVALID.

Only one level of holes is walked. A hole's own children (islands inside
holes) are never visited from the parent and, having a parent link, are
never evaluated on their own either.

Usage:
    from gliaseg.detection.contours import extract_regions, render_regions, ColorGenerator

    extraction = extract_regions(red_merge, "ccomp", min_area=1.0)
    print(extraction.label_counts())
    preview = render_regions(extraction, red_merge.shape, ColorGenerator(12345))
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from gliaseg.utils.logging import get_logger

logger = get_logger(__name__)

NO_LINK = -1


class RegionLabel(IntEnum):
    """Classification of a contour after area filtering."""
    INVALID = 0
    CHILD = 1
    PARENT = 2


class ExtractionMode(Enum):
    """Contour retrieval mode."""
    EXTERNAL = "external"
    CCOMP = "ccomp"

    @property
    def retrieval_flag(self) -> int:
        if self is ExtractionMode.EXTERNAL:
            return cv2.RETR_EXTERNAL
        return cv2.RETR_CCOMP

    @classmethod
    def resolve(cls, mode: Union["ExtractionMode", str]) -> "ExtractionMode":
        if isinstance(mode, cls):
            return mode
        try:
            return cls(str(mode).strip().lower())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ValueError(f"Unknown extraction mode {mode!r}. Valid modes: {valid}") from None


@dataclass(frozen=True)
class HierarchyRecord:
    """Links of one contour into the flat contour list (-1 means none)."""
    next: int
    prev: int
    child: int
    parent: int

    @property
    def is_external(self) -> bool:
        return self.parent == NO_LINK


def hierarchy_records(hierarchy: Optional[np.ndarray], n_contours: int) -> List[HierarchyRecord]:
    """
    Convert an OpenCV hierarchy array into records.

    Args:
        hierarchy: Array of shape (1, N, 4) or (N, 4), a list of 4-sequences,
            or None when no contours were found
        n_contours: Number of contours the hierarchy must describe

    Returns:
        One HierarchyRecord per contour

    Raises:
        ValueError: If the hierarchy does not have exactly one entry per contour
    """
    if hierarchy is None:
        rows = np.empty((0, 4), dtype=np.int32)
    else:
        rows = np.asarray(hierarchy, dtype=np.int64).reshape(-1, 4)

    if len(rows) != n_contours:
        raise ValueError(
            f"Hierarchy has {len(rows)} records for {n_contours} contours"
        )

    return [HierarchyRecord(*(int(v) for v in row)) for row in rows]


def contour_area(contour: np.ndarray) -> float:
    """Unsigned polygon area of a contour."""
    return float(abs(cv2.contourArea(contour)))


@dataclass
class ContourExtraction:
    """
    Contours of one mask with their hierarchy, labels and net areas.

    Attributes:
        contours: Flat list of contours (each an (N, 1, 2) or (N, 2) int32 array)
        hierarchy: One HierarchyRecord per contour
        labels: One RegionLabel per contour
        areas: Net area per contour; non-zero only for PARENT contours
        holes: For each PARENT contour, the indices of its CHILD contours
    """
    contours: List[np.ndarray]
    hierarchy: List[HierarchyRecord]
    labels: List[RegionLabel]
    areas: List[float]
    holes: Dict[int, List[int]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.contours)

    def accepted_indices(self) -> List[int]:
        """Indices of PARENT contours in ascending order."""
        return [i for i, label in enumerate(self.labels) if label == RegionLabel.PARENT]

    def child_indices(self) -> List[int]:
        """Indices of CHILD (hole) contours in ascending order."""
        return [i for i, label in enumerate(self.labels) if label == RegionLabel.CHILD]

    def accepted_areas(self) -> List[float]:
        """Net areas of PARENT contours, in index order."""
        return [self.areas[i] for i in self.accepted_indices()]

    def accepted_contours(self) -> List[np.ndarray]:
        return [self.contours[i] for i in self.accepted_indices()]

    def label_counts(self) -> Dict[RegionLabel, int]:
        """Count of contours per label; the counts sum to len(self)."""
        counts = {label: 0 for label in RegionLabel}
        for label in self.labels:
            counts[label] += 1
        return counts

    def hierarchy_array(self) -> np.ndarray:
        """Hierarchy in OpenCV layout, shape (1, N, 4) int32."""
        rows = [[r.next, r.prev, r.child, r.parent] for r in self.hierarchy]
        return np.array(rows, dtype=np.int32).reshape(1, -1, 4)


def resolve_hierarchy(
    contours: Sequence[np.ndarray],
    hierarchy: Optional[np.ndarray],
    min_area: float,
) -> ContourExtraction:
    """
    Label contours as PARENT / CHILD / INVALID and compute net areas.

    Pure function of its inputs; see the module docstring for the rules.

    Args:
        contours: Contours as returned by cv2.findContours
        hierarchy: Matching hierarchy (OpenCV layout) or None
        min_area: Minimum outer and net area for a region to be accepted

    Returns:
        ContourExtraction with one label and one area per contour
    """
    contours = list(contours)
    records = hierarchy_records(hierarchy, len(contours))
    n = len(contours)

    labels = [RegionLabel.INVALID] * n
    areas = [0.0] * n
    holes: Dict[int, List[int]] = {}

    for index, record in enumerate(records):
        if not record.is_external:
            continue

        area_external = contour_area(contours[index])
        if area_external < min_area:
            continue

        members: List[int] = []
        area_hole = 0.0
        visited = set()
        hole_index = record.child
        while hole_index > NO_LINK:
            if hole_index in visited or hole_index >= n:
                raise ValueError(f"Malformed hierarchy: bad sibling link at contour {hole_index}")
            visited.add(hole_index)

            hole = contour_area(contours[hole_index])
            if hole:
                members.append(hole_index)
                area_hole += hole
            hole_index = records[hole_index].next

        area_contour = area_external - area_hole
        if area_contour >= min_area:
            labels[index] = RegionLabel.PARENT
            areas[index] = area_contour
            for hole_member in members:
                labels[hole_member] = RegionLabel.CHILD
            holes[index] = members

    return ContourExtraction(
        contours=contours,
        hierarchy=records,
        labels=labels,
        areas=areas,
        holes=holes,
    )


def find_contours(
    mask: np.ndarray,
    mode: Union[ExtractionMode, str] = ExtractionMode.EXTERNAL,
) -> Tuple[List[np.ndarray], Optional[np.ndarray]]:
    """
    Run cv2.findContours on a binary mask without modifying it.

    Any non-zero pixel counts as foreground.
    """
    mode = ExtractionMode.resolve(mode)
    if mask.ndim != 2:
        raise ValueError(f"Expected a 2D mask, got shape {mask.shape}")

    binary = (mask > 0).astype(np.uint8) * 255
    contours, hierarchy = cv2.findContours(
        binary, mode.retrieval_flag, cv2.CHAIN_APPROX_SIMPLE
    )
    return list(contours), hierarchy


def extract_regions(
    mask: np.ndarray,
    mode: Union[ExtractionMode, str] = ExtractionMode.EXTERNAL,
    min_area: float = 1.0,
) -> ContourExtraction:
    """
    Find filled regions in a mask and resolve their hole hierarchy.

    Args:
        mask: Binary mask (uint8 or bool)
        mode: 'external' or 'ccomp'
        min_area: Minimum net area for a region to be accepted

    Returns:
        ContourExtraction
    """
    contours, hierarchy = find_contours(mask, mode)
    extraction = resolve_hierarchy(contours, hierarchy, min_area)

    counts = extraction.label_counts()
    logger.debug(
        f"Extracted {len(extraction)} contours ({ExtractionMode.resolve(mode).value}): "
        f"{counts[RegionLabel.PARENT]} accepted, {counts[RegionLabel.CHILD]} holes, "
        f"{counts[RegionLabel.INVALID]} invalid"
    )
    return extraction


class ColorGenerator:
    """
    Seeded pseudo-random BGR colors for region renderings.

    Two generators created with the same seed yield the same color sequence.
    """

    def __init__(self, seed: int = 12345):
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def next_color(self) -> Tuple[int, int, int]:
        values = self._rng.integers(0, 255, size=3)
        return (int(values[0]), int(values[1]), int(values[2]))

    def reset(self) -> None:
        self._rng = np.random.default_rng(self.seed)


def render_regions(
    extraction: ContourExtraction,
    shape: Tuple[int, ...],
    colors: Optional[ColorGenerator] = None,
) -> np.ndarray:
    """
    Fill every accepted region with its own color.

    Regions are drawn in ascending contour index; holes stay unfilled.

    Args:
        extraction: Result of extract_regions / resolve_hierarchy
        shape: (height, width) of the canvas
        colors: Color source; a fresh ColorGenerator() if None

    Returns:
        uint8 BGR image of shape (height, width, 3)
    """
    if colors is None:
        colors = ColorGenerator()

    canvas = np.zeros((shape[0], shape[1], 3), dtype=np.uint8)
    if len(extraction) == 0:
        return canvas

    hierarchy = extraction.hierarchy_array()
    for index in extraction.accepted_indices():
        cv2.drawContours(
            canvas, extraction.contours, index, colors.next_color(),
            thickness=cv2.FILLED, lineType=cv2.LINE_8, hierarchy=hierarchy,
        )
    return canvas
