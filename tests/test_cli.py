"""Tests for the command-line interface."""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from wldecay import __version__
from wldecay.cli import app

runner = CliRunner()


def _simulate(path: Path, *extra: str) -> None:
    result = runner.invoke(
        app,
        [
            "simulate",
            str(path),
            "--mixed", "80",
            "--ref-size", "30",
            "--chromosomes", "3",
            "--length", "30",
            "--seed", "1",
            *extra,
        ],
    )
    assert result.exit_code == 0, result.output


@pytest.fixture
def bundle(tmp_path: Path) -> Path:
    path = tmp_path / "sim.npz"
    _simulate(path)
    return path


RUN_OPTIONS = ["--binsize", "0.5", "--maxdis", "15"]


class TestCommands:
    """Tests for the simulate, info and run commands."""

    def test_version(self) -> None:
        """Test --version."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"wldecay {__version__}" in result.output

    def test_simulate_and_info(self, bundle: Path) -> None:
        """Test that a simulated bundle can be summarised."""
        assert bundle.exists()
        result = runner.invoke(app, ["info", str(bundle)])
        assert result.exit_code == 0
        assert "admixed" in result.output
        assert "source1" in result.output
        assert "markers on 3 chromosome(s)" in result.output

    def test_run_pretty(self, bundle: Path) -> None:
        """Test the default report."""
        result = runner.invoke(app, ["run", str(bundle), *RUN_OPTIONS])
        assert result.exit_code == 0, result.output
        assert "Weighted LD analysis of admixed" in result.output
        assert "Detected:" in result.output

    def test_run_json(self, bundle: Path) -> None:
        """Test JSON output."""
        result = runner.invoke(app, ["run", str(bundle), *RUN_OPTIONS, "--format", "json"])
        assert result.exit_code == 0, result.output
        assert '"verdicts"' in result.output
        assert '"2-ref source1-source2"' in result.output

    def test_raw_output_and_plot(self, bundle: Path, tmp_path: Path) -> None:
        """Test the raw curve tables and the decay plot."""
        raw = tmp_path / "curves.tsv"
        plot = tmp_path / "decay.png"
        result = runner.invoke(
            app,
            [
                "run",
                str(bundle),
                *RUN_OPTIONS,
                "--mindis", "1.0",
                "--raw-output", str(raw),
                "--jackknife-detail",
                "--plot", str(plot),
            ],
        )
        assert result.exit_code == 0, result.output
        text = raw.read_text()
        assert "# 2-ref source1-source2" in text
        assert "jk_1" in text
        assert plot.exists()

    def test_raw_output_many_references(self, tmp_path: Path) -> None:
        """Test that raw output is replaced by a note with three references."""
        path = tmp_path / "three.npz"
        _simulate(path, "--references", "3")
        raw = tmp_path / "curves.tsv"
        result = runner.invoke(
            app, ["run", str(path), *RUN_OPTIONS, "--raw-output", str(raw)]
        )
        assert result.exit_code == 0, result.output
        assert "not written" in raw.read_text()

    def test_naive_and_threads(self, bundle: Path) -> None:
        """Test the algorithm and thread options."""
        result = runner.invoke(
            app, ["run", str(bundle), *RUN_OPTIONS, "--naive", "--threads", "2", "-f", "tsv"]
        )
        assert result.exit_code == 0, result.output
        assert "mixed\treferences\tdetected" in result.output


class TestErrors:
    """Tests for fatal errors."""

    def test_invalid_format(self, bundle: Path) -> None:
        """Test that an unknown format exits with an error."""
        result = runner.invoke(app, ["run", str(bundle), "--format", "xml"])
        assert result.exit_code == 1
        assert "Invalid format" in result.output

    def test_missing_bundle(self, tmp_path: Path) -> None:
        """Test that an unreadable bundle exits with an error."""
        result = runner.invoke(app, ["run", str(tmp_path / "nope.npz")])
        assert result.exit_code == 1
        assert "could not read" in result.output

    def test_mincount_above_sample(self, bundle: Path) -> None:
        """Test that configuration errors exit with an error."""
        result = runner.invoke(app, ["run", str(bundle), *RUN_OPTIONS, "--mincount", "500"])
        assert result.exit_code == 1
        assert "mincount" in result.output

    def test_mindis_beyond_maxdis(self, bundle: Path) -> None:
        """Test that an inconsistent fit window is rejected."""
        result = runner.invoke(app, ["run", str(bundle), *RUN_OPTIONS, "--mindis", "40"])
        assert result.exit_code == 1

    def test_plot_path_looks_like_flag(self, bundle: Path) -> None:
        """Test that a flag given as plot path is rejected."""
        result = runner.invoke(app, ["run", str(bundle), "--plot", "--verbose"])
        assert result.exit_code != 0
