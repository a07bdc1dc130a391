"""
Preprocessing of raw channel planes into binary masks.

Includes:
- enhance: per-channel threshold / smooth / binarize
- zstack: OR-merging of masks across depth layers
"""

from .enhance import (
    Channel,
    Band,
    UnknownChannelError,
    resolve_channel,
    enhance_channel,
)

from .zstack import (
    merge_layers,
    group_layers,
    enhance_and_merge,
)

__all__ = [
    "Channel",
    "Band",
    "UnknownChannelError",
    "resolve_channel",
    "enhance_channel",
    "merge_layers",
    "group_layers",
    "enhance_and_merge",
]
