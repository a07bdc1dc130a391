"""
Comma-separated metrics table: one header row, one row per image / layer group.

Columns:
    image, total nuclei count, microglial nuclei count, neural nuclei count,
    other nuclei count, [mean/stddev microglial proximity count,]
    microglia count, then one column per microglia area bin.
"""

import csv
import threading
from pathlib import Path
from typing import List, Optional, Union

from gliaseg.reporting.stats import AreaHistogram, ImageMetrics
from gliaseg.utils.config import PipelineConfig
from gliaseg.utils.logging import get_logger

logger = get_logger(__name__)

BASE_COLUMNS = [
    "image",
    "total nuclei count",
    "microglial nuclei count",
    "neural nuclei count",
    "other nuclei count",
]
PROXIMITY_COLUMNS = [
    "mean microglial proximity count",
    "stddev microglial proximity count",
]


def metrics_header(config: Optional[PipelineConfig] = None) -> List[str]:
    """Column names for the metrics table under ``config``."""
    if config is None:
        config = PipelineConfig()

    header = list(BASE_COLUMNS)
    if config.proximity_metrics:
        header.extend(PROXIMITY_COLUMNS)
    header.append("microglia count")

    layout = AreaHistogram(
        counts=[0] * config.histogram.bin_count,
        bin_width=config.histogram.bin_width,
    )
    header.extend(layout.bin_labels("microglia area"))
    return header


class MetricsWriter:
    """
    Writes the metrics table.

    The file is created (truncated) and the header written on construction, so
    an unwritable path fails before any image is processed. Rows are flushed
    as they are written; ``write`` is safe to call from several threads.

    Example:
        with MetricsWriter("metrics.csv", config) as writer:
            writer.write(metrics)
    """

    def __init__(self, path: Union[str, Path], config: Optional[PipelineConfig] = None):
        self.path = Path(path)
        self.config = config or PipelineConfig()
        self.header = metrics_header(self.config)
        self.rows_written = 0
        self._lock = threading.Lock()

        self._file = open(self.path, 'w', newline='')
        self._writer = csv.writer(self._file)
        self._writer.writerow(self.header)
        self._file.flush()

    def write(self, metrics: ImageMetrics) -> None:
        """Append one row."""
        row = metrics.to_row(include_proximity=self.config.proximity_metrics)
        with self._lock:
            self._writer.writerow(row)
            self._file.flush()
            self.rows_written += 1

    def close(self) -> None:
        with self._lock:
            if not self._file.closed:
                self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
