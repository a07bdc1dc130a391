"""
Per-channel intensity enhancement into binary masks.

Each stain has its own background noise floor, so every channel is cleaned
with its own low threshold before the shared smooth-and-binarize steps:

1. Zero samples below the channel's low threshold
2. Invert (background becomes high-valued)
3. Gaussian smoothing to merge neighbouring foreground pixels
4. Binarize at the channel's high threshold
5. Re-invert so foreground marks the stained structures

The LOW band additionally keeps only faint, unsaturated structures.

Usage:
    from gliaseg.preprocessing.enhance import Channel, Band, enhance_channel

    mask = enhance_channel(blue_layer, Channel.BLUE, config)
    faint = enhance_channel(red_layer, "red", config, band=Band.LOW)
"""

from enum import Enum, IntEnum
from typing import Optional, Union

import cv2
import numpy as np

from gliaseg.utils.config import PipelineConfig, ChannelConfig
from gliaseg.utils.logging import get_logger

logger = get_logger(__name__)


class Channel(IntEnum):
    """Stain channels, valued by their plane index in a BGR raster."""
    BLUE = 0
    GREEN = 1
    RED = 2

    @property
    def label(self) -> str:
        return self.name.lower()


class Band(Enum):
    """Intensity sub-band emphasised by the enhancer."""
    FULL = "full"
    LOW = "low"


class UnknownChannelError(ValueError):
    """Raised when a channel specifier does not name a known stain channel."""
    pass


ChannelLike = Union[Channel, int, str]


def resolve_channel(channel: ChannelLike) -> Channel:
    """
    Normalize a channel specifier.

    Accepts a Channel, its plane index (0-2) or its name (case-insensitive).

    Raises:
        UnknownChannelError: For anything else
    """
    if isinstance(channel, Channel):
        return channel
    if isinstance(channel, str):
        try:
            return Channel[channel.strip().upper()]
        except KeyError:
            raise UnknownChannelError(f"Invalid channel type: {channel!r}") from None
    if isinstance(channel, (int, np.integer)) and not isinstance(channel, bool):
        try:
            return Channel(int(channel))
        except ValueError:
            raise UnknownChannelError(f"Invalid channel type: {channel!r}") from None
    raise UnknownChannelError(f"Invalid channel type: {channel!r}")


def resolve_band(band: Union[Band, str]) -> Band:
    """Normalize a band specifier ('full'/'high' or 'low')."""
    if isinstance(band, Band):
        return band
    if isinstance(band, str):
        key = band.strip().lower()
        if key in ("full", "high"):
            return Band.FULL
        if key == "low":
            return Band.LOW
    raise ValueError(f"Invalid intensity band: {band!r}")


def to_uint8(image: np.ndarray) -> np.ndarray:
    """
    Bring a single-channel intensity image onto the 0-255 scale.

    Thresholds are expressed in 8-bit units; deeper images are rescaled by
    their dtype range.
    """
    if image.ndim != 2:
        raise ValueError(f"Expected a single-channel 2D image, got shape {image.shape}")
    if image.dtype == np.uint8:
        return image
    if np.issubdtype(image.dtype, np.unsignedinteger):
        max_val = np.iinfo(image.dtype).max
        return np.round(image.astype(np.float64) * (255.0 / max_val)).astype(np.uint8)
    if np.issubdtype(image.dtype, np.floating):
        # Floats are taken to be already on the 0-255 scale
        return np.clip(np.round(image), 0, 255).astype(np.uint8)
    raise ValueError(f"Unsupported image dtype: {image.dtype}")


def threshold_smooth_invert(
    image: np.ndarray,
    low_threshold: int,
    high_threshold: int,
    kernel_size: tuple,
) -> np.ndarray:
    """
    Core enhancement: cut the noise floor, smooth, binarize, re-invert.

    Args:
        image: uint8 single-channel image
        low_threshold: Samples at or below this are zeroed
        high_threshold: Binarization cutoff on the inverted, smoothed image
        kernel_size: Gaussian kernel (odd, odd)

    Returns:
        uint8 mask with values {0, 255}
    """
    _, src_gray = cv2.threshold(image, low_threshold, 255, cv2.THRESH_TOZERO)
    src_gray = cv2.bitwise_not(src_gray)
    enhanced = cv2.GaussianBlur(src_gray, kernel_size, 0, 0)
    _, enhanced = cv2.threshold(enhanced, high_threshold, 255, cv2.THRESH_BINARY)
    return cv2.bitwise_not(enhanced)


def isolate_faint(
    image: np.ndarray,
    mask: np.ndarray,
    params: ChannelConfig,
) -> np.ndarray:
    """
    Restrict a mask to faint structures.

    The mask is intersected with a lightly smoothed copy of the raw image and
    near-saturated samples are dropped.

    Returns:
        uint8 mask with values {0, 255}
    """
    smoothed = cv2.GaussianBlur(image, params.kernel_size, 0, 0)
    faint = cv2.bitwise_and(smoothed, mask)
    faint[faint >= params.saturation_threshold] = 0
    _, faint = cv2.threshold(faint, 0, 255, cv2.THRESH_BINARY)
    return faint


def enhance_channel(
    image: np.ndarray,
    channel: ChannelLike,
    config: Optional[PipelineConfig] = None,
    band: Union[Band, str] = Band.FULL,
) -> np.ndarray:
    """
    Threshold and smooth one channel of one layer into a binary mask.

    Args:
        image: Single-channel intensity image (uint8, or deeper unsigned ints)
        channel: Channel, plane index or channel name
        config: Pipeline configuration (defaults if None)
        band: Band.FULL, or Band.LOW to keep only faint structures

    Returns:
        uint8 mask, 255 on foreground and 0 elsewhere

    Raises:
        UnknownChannelError: If ``channel`` is not a known stain channel
    """
    channel = resolve_channel(channel)
    band = resolve_band(band)
    if config is None:
        config = PipelineConfig()

    params = config.channel(channel.label)
    src = to_uint8(image)

    high = params.high_threshold if band is Band.FULL else params.low_band_high_threshold
    mask = threshold_smooth_invert(src, params.low_threshold, high, params.kernel_size)

    if band is Band.LOW:
        mask = isolate_faint(src, mask, params)

    return mask
