"""Tests for the Typer CLI (cli/main.py) that do not need the sampler."""

from __future__ import annotations

from pathlib import Path

import yaml
from typer.testing import CliRunner

from decoding_bayes.cli.main import _observations, app
from decoding_bayes.config import load_config
from decoding_bayes.io.artifacts import load_observation_sources, load_observations

runner = CliRunner()


def _config(tmp_path: Path, data_dir: Path) -> Path:
    raw = {
        "paths": {"data_dir": str(data_dir), "output_dir": str(tmp_path / "out")},
        "models": [
            {"name": "intercepts", "fixed_effects": [], "random_effects": [{"group": "region"}]},
            {"name": "slopes", "random_effects": [{"group": "region", "terms": ["intercept", "class"]}]},
        ],
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(raw))
    return path


def test_munge_writes_table(participant_files, tmp_path: Path):
    paths, _ = participant_files
    cfg = _config(tmp_path, paths[0].parent)
    result = runner.invoke(app, ["munge", "--config", str(cfg), "--no-plot"])
    assert result.exit_code == 0, result.output
    df = load_observations(tmp_path / "out" / "tables" / "observations.csv")
    assert len(df) == 26 * 5 * 3 + 26 * 4 * 3


def test_fit_dry_run(tmp_path: Path):
    cfg = _config(tmp_path, tmp_path / "missing")
    result = runner.invoke(app, ["fit", "--config", str(cfg), "--dry-run", "-m", "slopes"])
    assert result.exit_code == 0, result.output
    assert "(1 + class | region)" in result.output
    assert "intercepts" not in result.output


def test_compare_needs_two_fits(tmp_path: Path):
    cfg = _config(tmp_path, tmp_path)
    result = runner.invoke(app, ["compare", "--config", str(cfg)])
    assert result.exit_code == 1


def test_munge_records_sources(participant_files, tmp_path: Path):
    paths, _ = participant_files
    cfg = _config(tmp_path, paths[0].parent)
    runner.invoke(app, ["munge", "--config", str(cfg), "--no-plot"])
    sources = load_observation_sources(tmp_path / "out" / "tables" / "observations.csv")
    assert sources == {"files": [str(p.resolve()) for p in paths], "variable": "accuracy"}


def test_cached_observations_reused(participant_files, tmp_path: Path, monkeypatch):
    paths, _ = participant_files
    cfg = load_config(_config(tmp_path, paths[0].parent))
    first = _observations(cfg)

    def fail(*args, **kwargs):
        raise AssertionError("munge called with a valid cache")

    monkeypatch.setattr("decoding_bayes.data.loader.munge", fail)
    second = _observations(cfg)
    assert len(second) == len(first)


def test_cached_observations_rebuilt_when_files_change(participant_files, write_mat, tmp_path: Path, rng):
    paths, _ = participant_files
    cfg = load_config(_config(tmp_path, paths[0].parent))
    assert len(_observations(cfg)) == 26 * 5 * 3 + 26 * 4 * 3

    write_mat("sub-03.mat", (rng.random((2, 3, 26)) < 0.5).astype(float))
    df = _observations(cfg)
    assert len(df) == 26 * 5 * 3 + 26 * 4 * 3 + 26 * 2 * 3
    assert df["participant"].nunique() == 3
