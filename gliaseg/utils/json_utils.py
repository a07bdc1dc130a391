"""
JSON helpers for config.json and batch_results.json.

Both files may carry numpy scalars (thresholds read back from arrays, timing
floats) and must never be left half-written if a run is interrupted.
"""

import json
import math
import os
import tempfile
from pathlib import Path

import numpy as np


class NumpyEncoder(json.JSONEncoder):
    """Encode numpy scalars/arrays and paths; non-finite floats become null."""

    def default(self, obj):
        if isinstance(obj, np.bool_):
            return bool(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return _finite_or_none(float(obj))
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, Path):
            return str(obj)
        return super().default(obj)


def _finite_or_none(value: float):
    return None if (math.isnan(value) or math.isinf(value)) else value


def sanitize_for_json(obj):
    """Replace NaN/inf with None throughout nested dicts, lists and arrays."""
    if isinstance(obj, dict):
        return {k: sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize_for_json(v) for v in obj]
    if isinstance(obj, np.ndarray):
        return sanitize_for_json(obj.tolist())
    if isinstance(obj, (float, np.floating)):
        return _finite_or_none(float(obj))
    return obj


def atomic_json_dump(data, filepath) -> Path:
    """
    Write ``data`` as indented JSON via a temp file and ``os.replace``.

    The target holds either the previous content or the complete new
    document.

    Returns:
        Path of the written file
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=filepath.parent, suffix='.tmp')
    try:
        with os.fdopen(fd, 'w') as f:
            json.dump(sanitize_for_json(data), f, cls=NumpyEncoder, indent=2)
        os.replace(tmp_path, filepath)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
    return filepath
