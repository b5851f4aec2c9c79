"""
Artifact Persistence
====================

Saves and loads fitted-model artefacts and result tables.

Design Principles:
    - ArviZ NetCDF for posterior traces (``idata.nc``)
    - JSON for diagnostics and provenance (human-readable, git-diffable)
    - CSV for tables; observation tables round-trip with their categorical
      dtypes and category order restored
    - YAML snapshot of the model spec used for each fit

Output Layout::

    output_dir/
        artifacts/model-<name>/
            idata.nc
            diagnostics.json
            predictions.csv
            provenance.json
            config.yaml
        tables/
            observations.csv
            comparison.csv
        figures/
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import arviz as az
import numpy as np
import pandas as pd
import yaml

from decoding_bayes.data.loader import coerce_observation_types
from decoding_bayes.utils.logging import get_logger

logger = get_logger(__name__)


def get_artifact_dir(output_dir: Path, model_name: str) -> Path:
    """``output_dir/artifacts/model-<name>``, created if needed."""
    art_dir = Path(output_dir) / "artifacts" / f"model-{model_name}"
    art_dir.mkdir(parents=True, exist_ok=True)
    return art_dir


def get_tables_dir(output_dir: Path) -> Path:
    tables_dir = Path(output_dir) / "tables"
    tables_dir.mkdir(parents=True, exist_ok=True)
    return tables_dir


def save_fit_artifacts(
    output_dir: Path,
    model_name: str,
    idata: az.InferenceData,
    diagnostics: dict,
    provenance: dict,
    predictions: Optional[pd.DataFrame] = None,
    config_snapshot: Optional[dict] = None,
) -> Path:
    """Save everything produced by one model fit.

    Parameters
    ----------
    output_dir : Path
        Root output directory.
    model_name : str
        Model name (``ModelSpec.name``).
    idata : az.InferenceData
        Posterior trace.
    diagnostics : dict
        Convergence report (JSON-serializable after numpy conversion).
    provenance : dict
        Provenance metadata.
    predictions : pd.DataFrame or None
        Interval summary from ``get_predictions``.
    config_snapshot : dict or None
        Model spec to save as YAML.

    Returns
    -------
    Path
        The artifact directory.
    """
    art_dir = get_artifact_dir(output_dir, model_name)

    idata.to_netcdf(str(art_dir / "idata.nc"))
    _save_json(art_dir / "diagnostics.json", _make_serializable(diagnostics))
    _save_json(art_dir / "provenance.json", provenance)

    if predictions is not None:
        predictions.to_csv(art_dir / "predictions.csv", index=False)

    if config_snapshot is not None:
        with open(art_dir / "config.yaml", "w") as f:
            yaml.dump(config_snapshot, f, default_flow_style=False, sort_keys=False)

    logger.info("Saved artifacts for model-%s: %s", model_name, art_dir)
    return art_dir


def load_fit_artifacts(art_dir: Path) -> dict:
    """Load artefacts written by :func:`save_fit_artifacts`.

    Returns
    -------
    dict with keys:
        'idata': az.InferenceData
        'diagnostics': dict
        'provenance': dict
        'predictions': pd.DataFrame or None
    """
    art_dir = Path(art_dir)
    idata_path = art_dir / "idata.nc"
    if not idata_path.exists():
        raise FileNotFoundError(f"No trace in artifact directory: {art_dir}")

    result: dict[str, Any] = {"idata": az.from_netcdf(str(idata_path))}
    for key in ("diagnostics", "provenance"):
        path = art_dir / f"{key}.json"
        if path.exists():
            with open(path) as f:
                result[key] = json.load(f)
        else:
            result[key] = {}

    pred_path = art_dir / "predictions.csv"
    result["predictions"] = pd.read_csv(pred_path) if pred_path.exists() else None

    logger.info("Loaded artifacts from: %s", art_dir)
    return result


# ---------------------------------------------------------------------------
# Observation tables
# ---------------------------------------------------------------------------


def _sources_path(path: Path) -> Path:
    return path.with_suffix(".sources.json")


def save_observations(df: pd.DataFrame, path: Path, sources: Optional[dict] = None) -> Path:
    """Write an observation table to CSV.

    ``sources`` (the participant files and variable the table was built
    from) is written next to it as ``<name>.sources.json``.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    if sources is not None:
        _save_json(_sources_path(path), sources)
    logger.info("Saved %d observations to %s", len(df), path)
    return path


def load_observations(path: Path) -> pd.DataFrame:
    """Read an observation table written by :func:`save_observations`."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Observation table not found: {path}")
    return coerce_observation_types(pd.read_csv(path))


def load_observation_sources(path: Path) -> Optional[dict]:
    """The ``sources`` recorded for an observation table, or None."""
    sources_path = _sources_path(Path(path))
    if not sources_path.exists():
        return None
    with open(sources_path) as f:
        return json.load(f)


def save_table(df: pd.DataFrame, output_dir: Path, name: str, index: bool = False) -> Path:
    """Write ``df`` to ``output_dir/tables/<name>.csv``."""
    path = get_tables_dir(output_dir) / f"{name}.csv"
    df.to_csv(path, index=index)
    logger.info("Saved table %s (%d rows)", path, len(df))
    return path


def _save_json(path: Path, data: dict) -> None:
    """Save dict as JSON."""
    with open(path, "w") as f:
        json.dump(data, f, indent=2, default=str)


def _make_serializable(obj: Any) -> Any:
    """Make a nested dict/list JSON-serializable (convert numpy types)."""
    if isinstance(obj, dict):
        return {k: _make_serializable(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_make_serializable(v) for v in obj]
    elif isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        return float(obj)
    elif isinstance(obj, np.bool_):
        return bool(obj)
    return obj
