"""
Pytest fixtures for gliaseg tests.

Provides synthetic masks, polygon contours, layer stacks on disk and
temporary directories.
"""

import shutil
import sys
import tempfile
from pathlib import Path

import cv2
import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))


def square_contour(x, y, size):
    """Axis-aligned square polygon with corners (x, y) and (x+size, y+size)."""
    return np.array(
        [[[x, y]], [[x + size, y]], [[x + size, y + size]], [[x, y + size]]],
        dtype=np.int32,
    )


def octagon_contour(cx, cy, radius):
    """Eight-point polygon around (cx, cy); enough points for ellipse fitting."""
    angles = np.linspace(0, 2 * np.pi, 8, endpoint=False)
    points = np.stack([cx + radius * np.cos(angles), cy + radius * np.sin(angles)], axis=1)
    return np.round(points).astype(np.int32).reshape(-1, 1, 2)


def write_stack(directory, image_id, layers, extension="tif"):
    """
    Write BGR layers as <image_id>_z<N>c1+2+3.<ext> files.

    Returns:
        Path to the image directory
    """
    image_dir = Path(directory) / image_id
    image_dir.mkdir(parents=True, exist_ok=True)
    z_count = len(layers)
    for z_index, layer in enumerate(layers, 1):
        index = str(z_index) if z_count < 10 else f"{z_index:02d}"
        cv2.imwrite(str(image_dir / f"{image_id}_z{index}c1+2+3.{extension}"), layer)
    return image_dir


def make_layer(shape=(96, 96), blue=(), green=(), red=()):
    """
    Build one BGR layer from lists of (y0, y1, x0, x1, value) blocks per plane.
    """
    layer = np.zeros((shape[0], shape[1], 3), dtype=np.uint8)
    for plane, blocks in enumerate((blue, green, red)):
        for y0, y1, x0, x1, value in blocks:
            layer[y0:y1, x0:x1, plane] = value
    return layer


@pytest.fixture
def temp_output_dir():
    """
    Temporary directory for test outputs.

    Yields:
        Path: Path to temporary directory
    """
    temp_dir = tempfile.mkdtemp(prefix="gliaseg_test_")
    yield Path(temp_dir)
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def square_mask():
    """
    64x64 mask with one filled 10x10 pixel square at rows/cols 10..19.

    Returns:
        np.ndarray: uint8 mask with values {0, 255}
    """
    mask = np.zeros((64, 64), dtype=np.uint8)
    mask[10:20, 10:20] = 255
    return mask


@pytest.fixture
def ring_mask():
    """
    80x80 mask with a 40x40 square that has a 10x10 hole in it.

    Returns:
        np.ndarray: uint8 mask with values {0, 255}
    """
    mask = np.zeros((80, 80), dtype=np.uint8)
    mask[10:50, 10:50] = 255
    mask[25:35, 25:35] = 0
    return mask


@pytest.fixture
def cell_layer():
    """
    One BGR layer with three nuclei:

    - nucleus A (rows/cols 10..29) co-stained red  -> microglial
    - nucleus B (rows 10..29, cols 50..69) co-stained green -> neural
    - nucleus C (rows/cols 50..69) blue only -> other

    Returns:
        np.ndarray: 96x96x3 uint8 array
    """
    return make_layer(
        blue=[(10, 30, 10, 30, 200), (10, 30, 50, 70, 200), (50, 70, 50, 70, 200)],
        green=[(6, 34, 46, 74, 200)],
        red=[(6, 34, 6, 34, 200)],
    )


@pytest.fixture
def data_root(temp_output_dir, cell_layer):
    """
    Data directory with two valid stacks and one broken one.

    - 'sample_a': three identical layers
    - 'sample_b': two layers, nucleus A only present in layer 2
    - 'broken': layer z2 missing

    Returns:
        Path: data root directory
    """
    root = temp_output_dir / "data"
    write_stack(root, "sample_a", [cell_layer, cell_layer, cell_layer])

    first = cell_layer.copy()
    first[10:30, 10:30, 0] = 0
    write_stack(root, "sample_b", [first, cell_layer])

    broken_dir = write_stack(root, "broken", [cell_layer, cell_layer, cell_layer])
    (broken_dir / "broken_z2c1+2+3.tif").unlink()
    return root
