"""
Z-stack merging of per-layer binary masks.

Masks from consecutive depth layers are combined with a logical OR so a
structure present in any layer of a group appears in the merged mask.
"""

from typing import Iterator, List, Optional, Sequence, Union

import cv2
import numpy as np

from gliaseg.preprocessing.enhance import Band, ChannelLike, enhance_channel
from gliaseg.utils.config import PipelineConfig


def merge_layers(masks: Sequence[np.ndarray]) -> np.ndarray:
    """
    Union binary masks across depth layers.

    Args:
        masks: Non-empty sequence of equally shaped uint8 masks

    Returns:
        New uint8 mask (the inputs are not modified)

    Raises:
        ValueError: If ``masks`` is empty or shapes differ
    """
    if len(masks) == 0:
        raise ValueError("Cannot merge an empty list of masks")

    shape = masks[0].shape
    merged = masks[0].copy()
    for index, mask in enumerate(masks[1:], start=1):
        if mask.shape != shape:
            raise ValueError(
                f"Layer {index} has shape {mask.shape}, expected {shape}"
            )
        merged = cv2.bitwise_or(mask, merged)
    return merged


def group_layers(n_layers: int, layers_per_group: Optional[int] = None) -> Iterator[range]:
    """
    Split ``n_layers`` depth indices into consecutive groups.

    Args:
        n_layers: Number of layers in the stack
        layers_per_group: Group size; None puts every layer in one group.
            The final group may be shorter.

    Yields:
        range of 0-based layer indices per group
    """
    if n_layers <= 0:
        return
    if layers_per_group is None or layers_per_group >= n_layers:
        yield range(n_layers)
        return
    if layers_per_group < 1:
        raise ValueError(f"layers_per_group must be >= 1, got {layers_per_group}")
    for start in range(0, n_layers, layers_per_group):
        yield range(start, min(start + layers_per_group, n_layers))


def enhance_and_merge(
    layers: Sequence[np.ndarray],
    channel: ChannelLike,
    config: Optional[PipelineConfig] = None,
    band: Union[Band, str] = Band.FULL,
) -> np.ndarray:
    """Enhance every layer of one channel and merge the results."""
    enhanced: List[np.ndarray] = [
        enhance_channel(layer, channel, config, band) for layer in layers
    ]
    return merge_layers(enhanced)
