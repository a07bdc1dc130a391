"""
Output images for one processed image / layer group.

Always written:
    original_enhanced_and_flattened.tif  merged blue/green/red masks as one BGR image
    cell_classification.tif              nuclear mask with ellipse annotations

Written in debug mode:
    original_z<NN>.tif                           source layer copies
    <channel>_layer_merged_enhanced.tif          merged mask per channel
    <channel>_layer_merged_enhanced_segmented.tif  accepted regions, one color each
    blue_<partner>_layers_merged_enhanced.tif    classification intersection masks
"""

from pathlib import Path
from typing import Dict, Optional, Sequence, Union

import cv2
import numpy as np

from gliaseg.utils.logging import get_logger

logger = get_logger(__name__)

FLATTENED_NAME = "original_enhanced_and_flattened"
CLASSIFICATION_NAME = "cell_classification"

# (blue, green, red) plane values of the ellipse outline per cell type
MICROGLIAL_OUTLINE = (255, 0, 255)
NEURAL_OUTLINE = (255, 255, 0)

MIN_ELLIPSE_POINTS = 5


def write_image(path: Union[str, Path], image: np.ndarray) -> Path:
    """
    Encode an image to disk, creating parent directories.

    Raises:
        OSError: If OpenCV cannot encode or write the file
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        written = cv2.imwrite(str(path), image)
    except cv2.error as e:
        raise OSError(f"Could not write image '{path}': {e}") from e
    if not written:
        raise OSError(f"Could not write image '{path}'")
    return path


def flattened_composite(blue: np.ndarray, green: np.ndarray, red: np.ndarray) -> np.ndarray:
    """Stack three single-channel masks into one BGR image."""
    return cv2.merge([blue, green, red])


def _draw_outlines(
    planes: Sequence[np.ndarray],
    contours: Sequence[np.ndarray],
    outline: tuple,
    thickness: int,
) -> int:
    drawn = 0
    for contour in contours:
        if len(contour) < MIN_ELLIPSE_POINTS:
            continue
        ellipse = cv2.fitEllipse(contour)
        for plane, value in zip(planes, outline):
            cv2.ellipse(plane, ellipse, int(value), thickness, cv2.LINE_8)
        drawn += 1
    return drawn


def classification_composite(
    blue_merge: np.ndarray,
    microglial_contours: Sequence[np.ndarray],
    neural_contours: Sequence[np.ndarray],
    thickness: int = 4,
) -> np.ndarray:
    """
    Annotate classified nuclei with fitted ellipses.

    The blue plane carries the merged nuclear mask. Microglial nuclei are
    outlined in magenta (blue + red), neural nuclei in cyan (blue + green);
    unclassified nuclei stay unannotated.

    Args:
        blue_merge: Merged nuclear mask (not modified)
        microglial_contours: Nuclei classified as microglial
        neural_contours: Nuclei classified as neural
        thickness: Outline thickness in pixels

    Returns:
        uint8 BGR image
    """
    drawing_blue = blue_merge.copy()
    drawing_green = np.zeros_like(blue_merge)
    drawing_red = np.zeros_like(blue_merge)
    planes = (drawing_blue, drawing_green, drawing_red)

    _draw_outlines(planes, microglial_contours, MICROGLIAL_OUTLINE, thickness)
    _draw_outlines(planes, neural_contours, NEURAL_OUTLINE, thickness)

    return cv2.merge(list(planes))


def merged_mask_name(channel: str) -> str:
    return f"{channel}_layer_merged_enhanced"


def segmented_name(channel: str) -> str:
    return f"{merged_mask_name(channel)}_segmented"


def intersection_name(partner: str) -> str:
    return f"blue_{partner}_layers_merged_enhanced"


def write_outputs(
    output_dir: Union[str, Path],
    images: Dict[str, np.ndarray],
    extension: str = "tif",
) -> Dict[str, Path]:
    """
    Write named images into ``output_dir``.

    Args:
        output_dir: Target directory (created if missing)
        images: Mapping of file stem to image
        extension: File extension without the dot

    Returns:
        Mapping of file stem to written path
    """
    output_dir = Path(output_dir)
    written = {}
    for name, image in images.items():
        written[name] = write_image(output_dir / f"{name}.{extension}", image)
    logger.debug(f"Wrote {len(written)} images to {output_dir}")
    return written


def write_debug_artifacts(
    output_dir: Union[str, Path],
    originals: Sequence[np.ndarray],
    masks: Dict[str, np.ndarray],
    layer_numbers: Optional[Sequence[int]] = None,
    extension: str = "tif",
) -> Dict[str, Path]:
    """
    Write debug images for one layer group.

    Args:
        output_dir: Target directory
        originals: Source BGR layers, written as original_z<NN>
        masks: Merged masks, segmented renderings and intersections by file stem
        layer_numbers: 1-based depth index of each original (1..N if None)
        extension: File extension without the dot

    Returns:
        Mapping of file stem to written path
    """
    if layer_numbers is None:
        layer_numbers = range(1, len(originals) + 1)

    images = {
        f"original_z{number:02d}": image
        for number, image in zip(layer_numbers, originals)
    }
    images.update(masks)
    return write_outputs(output_dir, images, extension)
