"""
Batch processing of the images listed in a manifest.

Every image is processed independently: a failure is logged, its id appended
to the error log, and the batch moves on to the next image. Metrics rows are
written as images complete, in manifest order.

Usage:
    from gliaseg.processing.batch import BatchProcessor

    processor = BatchProcessor(
        image_ids=read_manifest("images.txt"),
        data_root="/data/stacks",
        results_root="result",
        metrics_path="metrics.csv",
        error_log_path="errors.txt",
        config=config,
    )
    result = processor.run()
"""

import signal
import time
from concurrent.futures import Future, ProcessPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from tqdm import tqdm

from gliaseg.io.metrics_writer import MetricsWriter
from gliaseg.processing.pipeline import process_image
from gliaseg.reporting.stats import ImageMetrics
from gliaseg.utils.config import PipelineConfig, get_default_path
from gliaseg.utils.json_utils import atomic_json_dump
from gliaseg.utils.logging import get_logger, log_parameters

logger = get_logger(__name__)


@dataclass
class ImageJob:
    """Processing state of one manifest entry."""
    image_id: str
    status: str = "pending"  # pending, processing, completed, failed
    error: Optional[str] = None
    groups_processed: int = 0
    processing_time_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image_id": self.image_id,
            "status": self.status,
            "error": self.error,
            "groups_processed": self.groups_processed,
            "processing_time_seconds": self.processing_time_seconds,
        }


@dataclass
class BatchResult:
    """Results from batch processing."""
    total_images: int
    completed: int
    failed: int
    rows_written: int
    total_time_seconds: float
    images: List[ImageJob] = field(default_factory=list)
    output_dir: Path = Path(".")
    metrics_path: Optional[Path] = None
    error_log_path: Optional[Path] = None

    @property
    def failed_ids(self) -> List[str]:
        return [job.image_id for job in self.images if job.status == "failed"]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "total_images": self.total_images,
            "completed": self.completed,
            "failed": self.failed,
            "rows_written": self.rows_written,
            "total_time_seconds": self.total_time_seconds,
            "metrics_path": str(self.metrics_path) if self.metrics_path else None,
            "error_log_path": str(self.error_log_path) if self.error_log_path else None,
            "images": [job.to_dict() for job in self.images],
            "timestamp": datetime.now().isoformat(),
        }

    def save(self, path: Optional[Union[str, Path]] = None) -> Path:
        """Save batch results to JSON."""
        if path is None:
            path = self.output_dir / "batch_results.json"
        path = atomic_json_dump(self.to_dict(), path)
        logger.info(f"Batch results saved to: {path}")
        return path


class ImageTimeoutError(RuntimeError):
    """Raised inside a worker when one image exceeds its time limit."""


@contextmanager
def time_limit(seconds: Optional[float]):
    """
    Raise ImageTimeoutError if the body runs longer than ``seconds``.

    Uses SIGALRM, so it only applies in the main thread of a process (the
    case for pool workers). Long calls inside native code are interrupted
    once they return to Python.
    """
    if not seconds:
        yield
        return

    def _on_alarm(signum, frame):
        raise ImageTimeoutError(f"timed out after {seconds}s")

    previous = signal.signal(signal.SIGALRM, _on_alarm)
    signal.setitimer(signal.ITIMER_REAL, seconds)
    try:
        yield
    finally:
        signal.setitimer(signal.ITIMER_REAL, 0)
        signal.signal(signal.SIGALRM, previous)


def _process_job(
    image_id: str,
    data_root: str,
    results_root: str,
    config: PipelineConfig,
    process_fn: Callable[..., List[ImageMetrics]] = process_image,
) -> List[ImageMetrics]:
    # Module-level so it can be pickled into worker processes.
    # The clock starts when the worker picks the image up, not on submission.
    with time_limit(config.image_timeout_s):
        return process_fn(image_id, data_root, results_root, config)


class BatchProcessor:
    """
    Process every image of a manifest and write one metrics table.

    The error log and the metrics table are opened when ``run`` starts,
    before any image is touched; failing to open either raises OSError.

    With ``config.num_workers > 1`` (or an ``image_timeout_s``), images run
    in a process pool. Rows are still written from this process, in
    manifest order. The time limit is enforced inside each worker, so an
    image that overruns fails alone and frees its worker for the next one.
    """

    def __init__(
        self,
        image_ids: List[str],
        data_root: Union[str, Path],
        results_root: Optional[Union[str, Path]] = None,
        metrics_path: Union[str, Path] = "metrics.csv",
        error_log_path: Union[str, Path] = "errors.txt",
        config: Optional[PipelineConfig] = None,
        show_progress: bool = True,
        process_fn: Callable[..., List[ImageMetrics]] = process_image,
    ):
        """
        Initialize batch processor.

        Args:
            image_ids: Image identities, one subdirectory of ``data_root`` each
            data_root: Directory holding the image subdirectories
            results_root: Output root (default: GLIASEG_RESULTS_DIR or ./result)
            metrics_path: Metrics table path (truncated on run)
            error_log_path: Failed-image list path (truncated on run)
            config: Pipeline configuration (defaults if None)
            show_progress: Show a tqdm progress bar
            process_fn: Per-image callable with the signature of
                ``process_image``; must be picklable for pool runs
        """
        self.jobs = [ImageJob(image_id=image_id) for image_id in image_ids]
        self.data_root = Path(data_root)
        if results_root is None:
            results_root = get_default_path("results_dir")
        self.results_root = Path(results_root)
        self.metrics_path = Path(metrics_path)
        self.error_log_path = Path(error_log_path)
        self.config = config or PipelineConfig()
        self.show_progress = show_progress
        self.process_fn = process_fn

    @property
    def parallel(self) -> bool:
        return self.config.num_workers > 1 or self.config.image_timeout_s is not None

    def run(self) -> BatchResult:
        """
        Run batch processing.

        Returns:
            BatchResult with processing summary

        Raises:
            OSError: If the error log or metrics table cannot be opened
        """
        start_time = time.time()

        log_parameters(logger, {
            "images": len(self.jobs),
            "data_root": self.data_root,
            "results_root": self.results_root,
            "metrics": self.metrics_path,
            "error_log": self.error_log_path,
            "layers_per_group": self.config.layers_per_group or "all",
            "workers": self.config.num_workers,
            "timeout_s": self.config.image_timeout_s,
            "debug": self.config.debug,
        }, title="Batch Processing Parameters")

        with open(self.error_log_path, 'w') as error_log, \
                MetricsWriter(self.metrics_path, self.config) as writer:
            self.results_root.mkdir(parents=True, exist_ok=True)

            if self.parallel:
                self._run_pool(writer, error_log)
            else:
                self._run_sequential(writer, error_log)

            rows_written = writer.rows_written

        completed = sum(1 for job in self.jobs if job.status == "completed")
        failed = sum(1 for job in self.jobs if job.status == "failed")
        total_time = time.time() - start_time

        result = BatchResult(
            total_images=len(self.jobs),
            completed=completed,
            failed=failed,
            rows_written=rows_written,
            total_time_seconds=total_time,
            images=self.jobs,
            output_dir=self.results_root,
            metrics_path=self.metrics_path,
            error_log_path=self.error_log_path,
        )
        result.save()

        logger.info("Batch processing complete:")
        logger.info(f"  Completed: {completed}/{len(self.jobs)}")
        logger.info(f"  Failed: {failed}")
        logger.info(f"  Rows written: {rows_written}")
        logger.info(f"  Total time: {total_time:.1f}s")

        return result

    def _record_success(self, job: ImageJob, rows: List[ImageMetrics], writer: MetricsWriter, started: float):
        for metrics in rows:
            writer.write(metrics)
        job.status = "completed"
        job.groups_processed = len(rows)
        job.processing_time_seconds = time.time() - started

    def _record_failure(self, job: ImageJob, reason: str, error_log, started: float):
        job.status = "failed"
        job.error = reason
        job.processing_time_seconds = time.time() - started
        logger.error(f"Skipping {job.image_id}: {reason}")
        error_log.write(f"{job.image_id}\n")
        error_log.flush()

    def _progress(self, iterable):
        if self.show_progress:
            return tqdm(iterable, total=len(self.jobs), desc="Processing images")
        return iterable

    def _run_sequential(self, writer: MetricsWriter, error_log) -> None:
        for job in self._progress(self.jobs):
            logger.info(f"Processing {job.image_id}")
            job.status = "processing"
            started = time.time()
            try:
                rows = self.process_fn(job.image_id, self.data_root, self.results_root, self.config)
            except Exception as e:
                self._record_failure(job, str(e), error_log, started)
                continue
            self._record_success(job, rows, writer, started)

    def _run_pool(self, writer: MetricsWriter, error_log) -> None:
        workers = max(1, self.config.num_workers)

        executor = ProcessPoolExecutor(max_workers=workers)
        try:
            futures: List[Future] = []
            for job in self.jobs:
                job.status = "processing"
                futures.append(executor.submit(
                    _process_job, job.image_id, str(self.data_root),
                    str(self.results_root), self.config, self.process_fn,
                ))

            started = time.time()
            for job, future in self._progress(zip(self.jobs, futures)):
                job_started = time.time()
                try:
                    rows = future.result()
                except Exception as e:
                    self._record_failure(job, str(e), error_log, job_started)
                    continue
                self._record_success(job, rows, writer, job_started)
            logger.debug(f"Pool finished {len(futures)} images in {time.time() - started:.1f}s")
        finally:
            executor.shutdown(cancel_futures=True)
