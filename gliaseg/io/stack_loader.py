"""
Loading of multi-channel z-stacks stored as one file per depth layer.

Layout of one image directory::

    <data_root>/<image-id>/<image-id>_z1c1+2+3.tif
    <data_root>/<image-id>/<image-id>_z2c1+2+3.tif
    ...

Stacks with ten or more layers use two-digit indices (``_z01`` ... ``_z12``).
Up to 99 layers are supported. Every file decodes to a BGR raster whose
planes are the blue (nuclear), green (neural) and red (microglial) stains.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Union

import cv2
import numpy as np

from gliaseg.preprocessing.enhance import ChannelLike, resolve_channel
from gliaseg.utils.logging import get_logger

logger = get_logger(__name__)

MAX_LAYERS = 99


class StackLoadError(Exception):
    """Raised when one image stack cannot be loaded; the batch skips that image."""
    pass


def layer_filename(image_id: str, z_index: int, z_count: int, extension: str = "tif") -> str:
    """
    Name of one layer file.

    Args:
        image_id: Image identity (the file stem prefix)
        z_index: 1-based depth index
        z_count: Number of layers in the stack (decides zero padding)
        extension: File extension without the dot

    Raises:
        StackLoadError: If the index is outside 1..99
    """
    if z_count > MAX_LAYERS or not 1 <= z_index <= MAX_LAYERS:
        raise StackLoadError(f"Does not support more than {MAX_LAYERS} z layers")
    index = str(z_index) if z_count < 10 else f"{z_index:02d}"
    return f"{image_id}_z{index}c1+2+3.{extension}"


def _layer_pattern(image_id: str, extension: str) -> "re.Pattern[str]":
    return re.compile(
        rf"^{re.escape(image_id)}_z(\d+)c1\+2\+3\.{re.escape(extension)}$"
    )


def discover_layers(
    image_dir: Union[str, Path],
    image_id: str,
    extension: str = "tif",
) -> List[Path]:
    """
    Find the layer files of one stack, ordered by depth.

    Args:
        image_dir: Directory holding the layer files
        image_id: Image identity used as the file name prefix
        extension: File extension without the dot

    Returns:
        Layer paths for z = 1..N

    Raises:
        StackLoadError: Directory unreadable, no layers, gaps or duplicates
            in the depth indices, or more than 99 layers
    """
    image_dir = Path(image_dir)
    if not image_dir.is_dir():
        raise StackLoadError(f"Could not open directory '{image_dir}'")

    pattern = _layer_pattern(image_id, extension)
    found: Dict[int, Path] = {}
    try:
        entries = sorted(image_dir.iterdir())
    except OSError as e:
        raise StackLoadError(f"Could not open directory '{image_dir}': {e}") from e

    for path in entries:
        match = pattern.match(path.name)
        if not match:
            continue
        z_index = int(match.group(1))
        if z_index in found:
            raise StackLoadError(
                f"Duplicate layer z{z_index} in '{image_dir}': "
                f"{found[z_index].name}, {path.name}"
            )
        found[z_index] = path

    if not found:
        raise StackLoadError(
            f"No layer files matching '{image_id}_z<N>c1+2+3.{extension}' in '{image_dir}'"
        )

    if len(found) > MAX_LAYERS or max(found) > MAX_LAYERS:
        raise StackLoadError(f"Does not support more than {MAX_LAYERS} z layers")

    if 0 in found:
        raise StackLoadError(f"Layer indices start at 1, found '{found[0].name}'")

    missing = sorted(set(range(1, max(found) + 1)) - set(found))
    if missing:
        raise StackLoadError(f"Missing layer(s) {missing} in '{image_dir}'")

    return [found[z] for z in sorted(found)]


@dataclass
class ImageStack:
    """
    All depth layers of one image, split into stain channels.

    Attributes:
        image_id: Image identity
        layer_paths: Source file per layer
        originals: Decoded BGR raster per layer
        blue, green, red: Single-channel plane per layer
    """
    image_id: str
    layer_paths: List[Path] = field(default_factory=list)
    originals: List[np.ndarray] = field(default_factory=list)
    blue: List[np.ndarray] = field(default_factory=list)
    green: List[np.ndarray] = field(default_factory=list)
    red: List[np.ndarray] = field(default_factory=list)

    @property
    def n_layers(self) -> int:
        return len(self.originals)

    @property
    def shape(self) -> tuple:
        return self.originals[0].shape[:2] if self.originals else (0, 0)

    def channel(self, channel: ChannelLike) -> List[np.ndarray]:
        """Per-layer planes of one channel."""
        return getattr(self, resolve_channel(channel).label)


def read_layer(path: Union[str, Path]) -> np.ndarray:
    """
    Decode one layer file into a 3-plane BGR array.

    Bit depth above 8 is preserved.

    Raises:
        StackLoadError: If the file cannot be decoded
    """
    image = cv2.imread(str(path), cv2.IMREAD_COLOR | cv2.IMREAD_ANYDEPTH)
    if image is None or image.size == 0:
        raise StackLoadError(f"Invalid input filename '{path}'")
    return image


def load_stack(
    image_dir: Union[str, Path],
    image_id: str,
    extension: str = "tif",
) -> ImageStack:
    """
    Load and split every layer of one image.

    Args:
        image_dir: Directory holding the layer files
        image_id: Image identity (file name prefix)
        extension: File extension without the dot

    Returns:
        ImageStack

    Raises:
        StackLoadError: See discover_layers; also undecodable files and
            layers whose dimensions differ
    """
    paths = discover_layers(image_dir, image_id, extension)
    stack = ImageStack(image_id=image_id, layer_paths=paths)

    for path in paths:
        image = read_layer(path)
        if stack.originals and image.shape != stack.originals[0].shape:
            raise StackLoadError(
                f"Layer '{path.name}' has shape {image.shape}, "
                f"expected {stack.originals[0].shape}"
            )
        blue, green, red = cv2.split(image)
        stack.originals.append(image)
        stack.blue.append(blue)
        stack.green.append(green)
        stack.red.append(red)

    logger.debug(f"Loaded {stack.n_layers} layers of {image_id} ({stack.shape[1]}x{stack.shape[0]})")
    return stack


def read_manifest(path: Union[str, Path]) -> List[str]:
    """
    Read image identities, one per line.

    Blank lines and lines starting with '#' are skipped; trailing slashes
    are removed.

    Raises:
        OSError: If the manifest cannot be read
    """
    image_ids = []
    with open(path, 'r') as f:
        for line in f:
            line = line.strip().rstrip("/")
            if line and not line.startswith('#'):
                image_ids.append(line)
    return image_ids
