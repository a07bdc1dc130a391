"""
End-to-end tests for per-image processing and batch runs.

Tests gliaseg/processing/pipeline.py, gliaseg/processing/batch.py and
gliaseg/cli.py on synthetic stacks written to disk.
"""

import csv
import json
import signal
import time

import pytest

from gliaseg.cli import main
from gliaseg.io.stack_loader import StackLoadError, load_stack
from gliaseg.processing.batch import (
    BatchProcessor,
    ImageTimeoutError,
    _process_job,
    time_limit,
)
from gliaseg.processing.pipeline import process_image, process_layer_group
from gliaseg.reporting.stats import ImageMetrics, bin_area_values
from gliaseg.utils.config import PipelineConfig
from gliaseg.utils.schemas import validate_batch_results_file


def stall_on_hung(image_id, data_root, results_root, config):
    """Stand-in for process_image: 'hung' never finishes, others return at once."""
    if image_id == "hung":
        time.sleep(30)
    return [ImageMetrics(
        image_id=image_id,
        microglial_nuclei=0,
        neural_nuclei=0,
        other_nuclei=0,
        microglia_histogram=bin_area_values([]),
    )]


class TestProcessImage:
    """Tests for process_image() on the conftest stacks."""

    def test_classification_counts(self, data_root, temp_output_dir):
        rows = process_image("sample_a", data_root, temp_output_dir / "result")

        assert len(rows) == 1
        metrics = rows[0]
        assert metrics.image_id == "sample_a"
        assert metrics.microglial_nuclei == 1
        assert metrics.neural_nuclei == 1
        assert metrics.other_nuclei == 1
        assert metrics.total_nuclei == 3
        assert metrics.layers == [1, 2, 3]

    def test_microglia_histogram(self, data_root, temp_output_dir):
        metrics = process_image("sample_a", data_root, temp_output_dir / "result")[0]

        assert metrics.microglia_count == 1
        assert sum(metrics.microglia_histogram.counts) == 1
        assert metrics.microglia_histogram.counts[-1] == 1

    def test_layers_merged(self, data_root, temp_output_dir):
        """A nucleus present in only one layer still counts after merging."""
        a = process_image("sample_a", data_root, temp_output_dir / "result")[0]
        b = process_image("sample_b", data_root, temp_output_dir / "result")[0]
        assert b.to_row()[1:] == a.to_row()[1:]

    def test_outputs_written(self, data_root, temp_output_dir):
        results = temp_output_dir / "result"
        process_image("sample_a", data_root, results)

        out = results / "sample_a"
        assert (out / "original_enhanced_and_flattened.tif").exists()
        assert (out / "cell_classification.tif").exists()
        assert not (out / "original_z01.tif").exists()

    def test_debug_outputs(self, data_root, temp_output_dir):
        results = temp_output_dir / "result"
        process_image("sample_a", data_root, results, PipelineConfig(debug=True))

        out = results / "sample_a"
        for name in (
            "original_z01", "original_z03",
            "blue_layer_merged_enhanced", "green_layer_merged_enhanced", "red_layer_merged_enhanced",
            "red_layer_merged_enhanced_segmented",
            "blue_red_layers_merged_enhanced", "blue_green_layers_merged_enhanced",
        ):
            assert (out / f"{name}.tif").exists(), name

    def test_layer_groups(self, data_root, temp_output_dir):
        results = temp_output_dir / "result"
        rows = process_image("sample_a", data_root, results, PipelineConfig(layers_per_group=2))

        assert [m.image_id for m in rows] == ["sample_a_g1", "sample_a_g2"]
        assert [m.layers for m in rows] == [[1, 2], [3]]
        assert (results / "sample_a" / "group_01" / "cell_classification.tif").exists()
        assert (results / "sample_a" / "group_02" / "cell_classification.tif").exists()

    def test_proximity(self, data_root, temp_output_dir):
        config = PipelineConfig(proximity_metrics=True)
        metrics = process_image("sample_a", data_root, temp_output_dir / "result", config)[0]

        assert metrics.proximity is not None
        assert metrics.proximity.counts == [1]
        assert len(metrics.to_row(include_proximity=True)) == len(metrics.to_row()) + 2

    def test_broken_stack_raises(self, data_root, temp_output_dir):
        with pytest.raises(StackLoadError):
            process_image("broken", data_root, temp_output_dir / "result")

    def test_layer_group_without_output(self, data_root, temp_output_dir):
        stack = load_stack(data_root / "sample_a", "sample_a")
        metrics = process_layer_group(stack, [0], PipelineConfig(), output_dir=None)
        assert metrics.total_nuclei == 3
        assert metrics.image_id == "sample_a"

    def test_empty_layer_group(self, data_root):
        stack = load_stack(data_root / "sample_a", "sample_a")
        with pytest.raises(ValueError):
            process_layer_group(stack, [])


class TestBatchProcessor:
    """Tests for BatchProcessor.run()."""

    def make_processor(self, data_root, temp_output_dir, image_ids, **config):
        return BatchProcessor(
            image_ids=image_ids,
            data_root=data_root,
            results_root=temp_output_dir / "result",
            metrics_path=temp_output_dir / "metrics.csv",
            error_log_path=temp_output_dir / "errors.txt",
            config=PipelineConfig(**config),
            show_progress=False,
        )

    def test_failures_do_not_stop_batch(self, data_root, temp_output_dir):
        processor = self.make_processor(
            data_root, temp_output_dir, ["sample_a", "broken", "ghost", "sample_b"]
        )
        result = processor.run()

        assert result.completed == 2
        assert result.failed == 2
        assert result.rows_written == 2
        assert result.failed_ids == ["broken", "ghost"]
        assert (temp_output_dir / "errors.txt").read_text() == "broken\nghost\n"

        rows = list(csv.reader((temp_output_dir / "metrics.csv").open()))
        assert [row[0] for row in rows[1:]] == ["sample_a", "sample_b"]

    def test_batch_results_saved(self, data_root, temp_output_dir):
        self.make_processor(data_root, temp_output_dir, ["sample_a", "broken"]).run()

        path = temp_output_dir / "result" / "batch_results.json"
        model = validate_batch_results_file(path)
        assert model.total_images == 2
        assert model.images[1].status == "failed"
        assert "Missing layer" in model.images[1].error

    def test_layer_groups_add_rows(self, data_root, temp_output_dir):
        result = self.make_processor(
            data_root, temp_output_dir, ["sample_a"], layers_per_group=1
        ).run()
        assert result.rows_written == 3
        assert result.images[0].groups_processed == 3

    def test_empty_manifest(self, data_root, temp_output_dir):
        result = self.make_processor(data_root, temp_output_dir, []).run()
        assert result.total_images == 0
        rows = list(csv.reader((temp_output_dir / "metrics.csv").open()))
        assert len(rows) == 1

    def test_error_log_unwritable_is_fatal(self, data_root, temp_output_dir):
        processor = BatchProcessor(
            image_ids=["sample_a"],
            data_root=data_root,
            results_root=temp_output_dir / "result",
            metrics_path=temp_output_dir / "metrics.csv",
            error_log_path=temp_output_dir / "missing" / "errors.txt",
            show_progress=False,
        )
        with pytest.raises(OSError):
            processor.run()
        assert not (temp_output_dir / "metrics.csv").exists()
        assert not (temp_output_dir / "result" / "sample_a").exists()

    def test_metrics_unwritable_is_fatal(self, data_root, temp_output_dir):
        processor = BatchProcessor(
            image_ids=["sample_a"],
            data_root=data_root,
            results_root=temp_output_dir / "result",
            metrics_path=temp_output_dir / "missing" / "metrics.csv",
            error_log_path=temp_output_dir / "errors.txt",
            show_progress=False,
        )
        with pytest.raises(OSError):
            processor.run()
        assert not (temp_output_dir / "result" / "sample_a").exists()

    def test_process_pool(self, data_root, temp_output_dir):
        processor = self.make_processor(
            data_root, temp_output_dir, ["sample_b", "broken", "sample_a"], num_workers=2
        )
        result = processor.run()

        assert result.completed == 2
        assert result.failed_ids == ["broken"]
        rows = list(csv.reader((temp_output_dir / "metrics.csv").open()))
        assert [row[0] for row in rows[1:]] == ["sample_b", "sample_a"]

    def test_timeout_fails_only_the_slow_image(self, data_root, temp_output_dir):
        """A single worker that overruns frees itself for the images queued behind it."""
        processor = BatchProcessor(
            image_ids=["hung", "ok_a", "ok_b"],
            data_root=data_root,
            results_root=temp_output_dir / "result",
            metrics_path=temp_output_dir / "metrics.csv",
            error_log_path=temp_output_dir / "errors.txt",
            config=PipelineConfig(image_timeout_s=1.0),
            show_progress=False,
            process_fn=stall_on_hung,
        )
        started = time.time()
        result = processor.run()

        assert time.time() - started < 20
        assert result.failed_ids == ["hung"]
        assert "timed out" in result.images[0].error
        assert (temp_output_dir / "errors.txt").read_text() == "hung\n"
        rows = list(csv.reader((temp_output_dir / "metrics.csv").open()))
        assert [row[0] for row in rows[1:]] == ["ok_a", "ok_b"]

    def test_timeout_with_real_images(self, data_root, temp_output_dir):
        result = self.make_processor(
            data_root, temp_output_dir, ["sample_a", "broken", "sample_b"], image_timeout_s=60.0
        ).run()
        assert result.failed_ids == ["broken"]
        assert result.rows_written == 2


class TestTimeLimit:
    """Tests for the per-image time limit applied inside each job."""

    def test_overrun_raises(self, temp_output_dir):
        config = PipelineConfig(image_timeout_s=0.2)
        with pytest.raises(ImageTimeoutError, match="timed out after 0.2s"):
            _process_job("hung", "data", str(temp_output_dir), config, stall_on_hung)

    def test_fast_job_returns_rows(self, temp_output_dir):
        config = PipelineConfig(image_timeout_s=5.0)
        rows = _process_job("ok", "data", str(temp_output_dir), config, stall_on_hung)
        assert [m.image_id for m in rows] == ["ok"]

    def test_alarm_handler_restored(self):
        previous = signal.getsignal(signal.SIGALRM)
        with time_limit(5.0):
            assert signal.getsignal(signal.SIGALRM) is not previous
        assert signal.getsignal(signal.SIGALRM) == previous
        assert signal.getitimer(signal.ITIMER_REAL) == (0.0, 0.0)

    def test_no_limit(self):
        previous = signal.getsignal(signal.SIGALRM)
        with time_limit(None):
            assert signal.getsignal(signal.SIGALRM) == previous


class TestCli:
    """Tests for the gliaseg command line."""

    def write_manifest(self, temp_output_dir, *ids):
        path = temp_output_dir / "images.txt"
        path.write_text("".join(f"{i}\n" for i in ids))
        return path

    def run_args(self, data_root, temp_output_dir, manifest, *extra):
        return [
            "-q", "run", str(data_root), str(manifest),
            str(temp_output_dir / "errors.txt"), str(temp_output_dir / "metrics.csv"),
            "--results-dir", str(temp_output_dir / "result"),
            *extra,
        ]

    def test_run(self, data_root, temp_output_dir):
        manifest = self.write_manifest(temp_output_dir, "sample_a", "broken")

        code = main(self.run_args(data_root, temp_output_dir, manifest))

        assert code == 0
        assert (temp_output_dir / "errors.txt").read_text() == "broken\n"
        rows = list(csv.reader((temp_output_dir / "metrics.csv").open()))
        assert len(rows) == 2

    def test_run_options(self, data_root, temp_output_dir):
        manifest = self.write_manifest(temp_output_dir, "sample_a")

        code = main(self.run_args(
            data_root, temp_output_dir, manifest,
            "--layers-per-group", "2", "--proximity", "--debug",
        ))

        assert code == 0
        rows = list(csv.reader((temp_output_dir / "metrics.csv").open()))
        assert rows[0][5] == "mean microglial proximity count"
        assert [row[0] for row in rows[1:]] == ["sample_a_g1", "sample_a_g2"]
        assert (temp_output_dir / "result" / "sample_a" / "group_01" / "original_z01.tif").exists()

    def test_run_with_timeout(self, data_root, temp_output_dir):
        manifest = self.write_manifest(temp_output_dir, "sample_a", "broken", "sample_b")

        code = main(self.run_args(data_root, temp_output_dir, manifest, "--timeout", "60"))

        assert code == 0
        assert (temp_output_dir / "errors.txt").read_text() == "broken\n"
        rows = list(csv.reader((temp_output_dir / "metrics.csv").open()))
        assert [row[0] for row in rows[1:]] == ["sample_a", "sample_b"]

    def test_missing_manifest(self, data_root, temp_output_dir):
        code = main(self.run_args(data_root, temp_output_dir, temp_output_dir / "none.txt"))
        assert code == 1

    def test_invalid_config(self, data_root, temp_output_dir):
        manifest = self.write_manifest(temp_output_dir, "sample_a")
        config_path = temp_output_dir / "config.json"
        config_path.write_text(json.dumps({"histogram": {"bin_count": 0}}))

        code = main(self.run_args(data_root, temp_output_dir, manifest, "--config", str(config_path)))

        assert code == 1
        assert not (temp_output_dir / "metrics.csv").exists()

    def test_unwritable_error_log(self, data_root, temp_output_dir):
        manifest = self.write_manifest(temp_output_dir, "sample_a")
        code = main([
            "-q", "run", str(data_root), str(manifest),
            str(temp_output_dir / "missing" / "errors.txt"), str(temp_output_dir / "metrics.csv"),
        ])
        assert code == 1

    def test_validate(self, temp_output_dir):
        good = temp_output_dir / "config.json"
        good.write_text(json.dumps({"layers_per_group": 4}))
        bad = temp_output_dir / "bad_config.json"
        bad.write_text(json.dumps({"histogram": {"bin_count": 0}}))

        assert main(["-q", "validate", str(good)]) == 0
        assert main(["-q", "validate", str(good), str(bad)]) == 1

    def test_config_summary(self, capsys):
        assert main(["-q", "config"]) == 0
        assert "Configuration Summary" in capsys.readouterr().out

    def test_no_command(self):
        assert main([]) == 0
