"""
Per-image processing: enhance, merge, extract, classify, bin, render.

Usage:
    from gliaseg.processing.pipeline import process_image

    rows = process_image("sample_01", "/data/stacks", "result", config)
    for metrics in rows:
        print(metrics.to_row())
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import cv2
import numpy as np

from gliaseg.classification.overlap import NucleiClassification, classify_nuclei
from gliaseg.detection.contours import (
    ColorGenerator,
    ContourExtraction,
    extract_regions,
    render_regions,
)
from gliaseg.io import rendering
from gliaseg.io.stack_loader import ImageStack, load_stack
from gliaseg.preprocessing.enhance import Channel
from gliaseg.preprocessing.zstack import enhance_and_merge, group_layers
from gliaseg.reporting.stats import ImageMetrics, bin_areas, proximity_metrics
from gliaseg.utils.config import PipelineConfig
from gliaseg.utils.logging import ProcessingTimer, get_logger

logger = get_logger(__name__)

__all__ = [
    "ImageMetrics",
    "process_layer_group",
    "process_image",
]


def _merge_channels(
    stack: ImageStack,
    layer_indices: Sequence[int],
    config: PipelineConfig,
) -> Dict[str, np.ndarray]:
    merged = {}
    for channel in Channel:
        planes = stack.channel(channel)
        merged[channel.label] = enhance_and_merge(
            [planes[i] for i in layer_indices], channel, config
        )
    return merged


def _write_group_outputs(
    output_dir: Path,
    stack: ImageStack,
    layer_indices: Sequence[int],
    merged: Dict[str, np.ndarray],
    extractions: Dict[str, ContourExtraction],
    intersections: Dict[str, np.ndarray],
    classification: NucleiClassification,
    config: PipelineConfig,
) -> None:
    ext = config.file_extension

    if config.debug:
        colors = ColorGenerator(config.color_seed)
        masks = {}
        for name, mask in merged.items():
            masks[rendering.merged_mask_name(name)] = mask
            masks[rendering.segmented_name(name)] = render_regions(
                extractions[name], mask.shape, colors
            )
        for partner, intersection in intersections.items():
            masks[rendering.intersection_name(partner)] = intersection
        rendering.write_debug_artifacts(
            output_dir,
            [stack.originals[i] for i in layer_indices],
            masks,
            layer_numbers=[i + 1 for i in layer_indices],
            extension=ext,
        )

    rendering.write_outputs(output_dir, {
        rendering.FLATTENED_NAME: rendering.flattened_composite(
            merged["blue"], merged["green"], merged["red"]
        ),
        rendering.CLASSIFICATION_NAME: rendering.classification_composite(
            merged["blue"],
            classification.microglial,
            classification.neural,
            thickness=config.ellipse_thickness,
        ),
    }, ext)


def process_layer_group(
    stack: ImageStack,
    layer_indices: Sequence[int],
    config: Optional[PipelineConfig] = None,
    output_dir: Optional[Union[str, Path]] = None,
    group_id: Optional[str] = None,
) -> ImageMetrics:
    """
    Run the full analysis on a group of consecutive layers of one stack.

    Args:
        stack: Loaded image stack
        layer_indices: 0-based indices of the layers to merge
        config: Pipeline configuration (defaults if None)
        output_dir: Where to write images; nothing is written if None
        group_id: Row identity (defaults to the stack's image id)

    Returns:
        ImageMetrics for the group

    Raises:
        ValueError: If ``layer_indices`` is empty
    """
    if config is None:
        config = PipelineConfig()
    layer_indices = list(layer_indices)
    if not layer_indices:
        raise ValueError(f"No layers selected for {stack.image_id}")
    row_id = group_id or stack.image_id

    merged = _merge_channels(stack, layer_indices, config)

    extractions = {}
    for name, mask in merged.items():
        params = config.channel(name)
        extractions[name] = extract_regions(mask, params.extraction_mode, params.min_area)

    # Intersection masks keyed by partner channel
    intersections = {}
    for rule in (config.microglial, config.neural):
        if rule.partner_channel not in intersections:
            intersections[rule.partner_channel] = cv2.bitwise_and(
                merged["blue"], merged[rule.partner_channel]
            )

    classification = classify_nuclei(
        extractions["blue"].contours,
        intersections[config.microglial.partner_channel],
        intersections[config.neural.partner_channel],
        config,
    )

    histogram = bin_areas(extractions[config.microglial.partner_channel], config.histogram)

    proximity = None
    if config.proximity_metrics:
        proximity = proximity_metrics(
            classification.microglial,
            classification.neural,
            roi_factor=config.microglial_roi_factor,
        )

    if output_dir is not None:
        _write_group_outputs(
            Path(output_dir), stack, layer_indices, merged, extractions,
            intersections, classification, config,
        )

    metrics = ImageMetrics(
        image_id=row_id,
        microglial_nuclei=len(classification.microglial),
        neural_nuclei=len(classification.neural),
        other_nuclei=len(classification.other),
        microglia_histogram=histogram,
        proximity=proximity,
        layers=[i + 1 for i in layer_indices],
    )
    logger.debug(
        f"{row_id}: {metrics.total_nuclei} nuclei "
        f"({metrics.microglial_nuclei} microglial, {metrics.neural_nuclei} neural), "
        f"{metrics.microglia_count} microglia"
    )
    return metrics


def process_image(
    image_id: str,
    data_root: Union[str, Path],
    results_root: Union[str, Path],
    config: Optional[PipelineConfig] = None,
) -> List[ImageMetrics]:
    """
    Load one image stack and process each of its layer groups.

    The stack is read from ``data_root/image_id``; outputs go to
    ``results_root/<image name>``, with a ``group_NN`` subdirectory per group
    when the stack is split into several groups.

    Args:
        image_id: Image identity from the manifest
        data_root: Directory holding one subdirectory per image
        results_root: Root of the per-image output directories
        config: Pipeline configuration (defaults if None)

    Returns:
        One ImageMetrics per layer group

    Raises:
        StackLoadError: If the stack cannot be loaded
    """
    if config is None:
        config = PipelineConfig()

    name = Path(image_id).name
    output_dir = Path(results_root) / name

    with ProcessingTimer(logger, f"Image {image_id}"):
        stack = load_stack(Path(data_root) / image_id, name, config.file_extension)

        groups = list(group_layers(stack.n_layers, config.layers_per_group))
        results = []
        for number, indices in enumerate(groups, 1):
            if len(groups) > 1:
                group_id = f"{image_id}_g{number}"
                group_dir = output_dir / f"group_{number:02d}"
            else:
                group_id = image_id
                group_dir = output_dir
            results.append(
                process_layer_group(stack, indices, config, group_dir, group_id)
            )
    return results
