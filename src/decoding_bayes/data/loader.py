"""
Per-participant decoding-accuracy loader and long-format reshaping ("munge").

Input files are MATLAB ``.mat`` files, one per participant:
  - ``accuracy``: numeric array ``(n_trials, 3, n_regions)`` or a cell array of
    ``n_regions`` matrices, each ``(n_trials, 3)``; 1 = trial decoded correctly
  - ``class_names`` (optional): names of the three columns; defaults to
    ``feature1, feature2, object`` in that order
  - ``region_index`` (optional): 1-based region index of each region slot;
    defaults to ``1..n_regions``
Key choices:
  - Columns are matched by name, never by position, once names are present
  - Trial count must agree across all 26 regions of a file
  - Un-pivoting is trial-major: (trial 1, feature1), (trial 1, feature2), ...
  - Participant is the 1-based position of the file in the input list
Assumptions / deviations:
  - .mat may be v7.3 (HDF5) or earlier; h5py reads the former, scipy the latter
  - Values must be 0/1 (or logical); anything else is a malformed file
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Sequence

import h5py
import numpy as np
import pandas as pd
from scipy.io import loadmat
from scipy.io.matlab import MatReadError

from decoding_bayes.data.regions import CLASSES, N_REGIONS, REGIONS, region_labels
from decoding_bayes.errors import SchemaError
from decoding_bayes.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_VARIABLE = "accuracy"
OBSERVATION_COLUMNS = ("participant", "region", "class", "trial", "value")


# ---------------------------------------------------------------------------
# File discovery and parsing
# ---------------------------------------------------------------------------


def discover_files(data_dir: Path, pattern: str = "*.mat") -> list[Path]:
    """List participant files in ``data_dir`` in sorted (participant) order.

    Raises
    ------
    FileNotFoundError
        If the directory does not exist or no file matches ``pattern``.
    """
    data_dir = Path(data_dir)
    if not data_dir.is_dir():
        raise FileNotFoundError(f"Data directory not found: {data_dir}")
    files = sorted(p for p in data_dir.glob(pattern) if p.is_file())
    if not files:
        raise FileNotFoundError(f"No files matching '{pattern}' in {data_dir}")
    logger.info("Discovered %d participant files in %s", len(files), data_dir)
    return files


def load_participant_file(
    path: Path,
    variable: str = DEFAULT_VARIABLE,
) -> dict[str, pd.DataFrame]:
    """Parse one participant file into 26 wide per-region tables.

    Parameters
    ----------
    path : Path
        Participant ``.mat`` file.
    variable : str
        Name of the accuracy variable inside the file.

    Returns
    -------
    dict[str, pd.DataFrame]
        Region label → table with columns ``trial, feature1, feature2, object``
        (``trial`` is 1-based, class columns are bool). Keys follow ``REGIONS``
        order.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    OSError
        If the file is not a readable .mat file.
    SchemaError
        On a missing variable or class column, a bad region index, an
        inconsistent trial count or non-binary values.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Participant file not found: {path}")

    accuracy, class_names, region_index = _read_mat(path, variable)

    slabs = _split_regions(accuracy)
    order = _class_column_order(class_names, n_columns=slabs[0].shape[1])

    n_trials = {slab.shape[0] for slab in slabs}
    if len(n_trials) != 1:
        raise SchemaError(
            "malformed source — inconsistent trial count across regions "
            f"({sorted(n_trials)}) in {path.name}"
        )

    if region_index is None:
        region_index = np.arange(1, len(slabs) + 1)
    region_index = np.asarray(region_index).ravel()
    if region_index.size != len(slabs):
        raise SchemaError(
            f"{path.name}: {region_index.size} region indices for {len(slabs)} regions"
        )
    labels = region_labels(region_index.tolist())
    if len(labels) != N_REGIONS:
        raise SchemaError(
            f"{path.name}: expected {N_REGIONS} regions, found {len(labels)}"
        )

    by_label = {}
    for label, slab in zip(labels, slabs):
        by_label[label] = _wide_table(slab[:, order], path, label)

    n = n_trials.pop()
    logger.info("Loaded %s | regions=%d trials=%d", path.name, len(by_label), n)
    return {label: by_label[label] for label in REGIONS}


def _read_mat(
    path: Path, variable: str
) -> tuple[np.ndarray | list[np.ndarray], Optional[list[str]], Optional[np.ndarray]]:
    """Read the accuracy, class-name and region-index variables from a .mat file."""
    if h5py.is_hdf5(str(path)):
        return _read_mat_v73(path, variable)

    try:
        mat = loadmat(str(path))
    except (MatReadError, ValueError) as e:
        raise OSError(f"Unreadable .mat file {path}: {e}") from e

    if variable not in mat:
        available = [k for k in mat.keys() if not k.startswith("__")]
        raise SchemaError(f"Variable '{variable}' not found in {path.name}. Available: {available}")

    accuracy = mat[variable]
    if accuracy.dtype == object:
        accuracy = [np.asarray(cell) for cell in accuracy.ravel()]

    class_names = None
    if "class_names" in mat:
        class_names = [str(np.squeeze(c)).strip() for c in np.asarray(mat["class_names"]).ravel()]

    region_index = mat["region_index"] if "region_index" in mat else None
    logger.debug("Loaded %s via scipy.io.loadmat (v5/v7 format)", path.name)
    return accuracy, class_names, region_index


def _read_mat_v73(
    path: Path, variable: str
) -> tuple[np.ndarray | list[np.ndarray], Optional[list[str]], Optional[np.ndarray]]:
    """HDF5-backed .mat (saved with '-v7.3'); arrays come back axis-reversed."""
    with h5py.File(str(path), "r") as f:
        if variable not in f:
            raise SchemaError(
                f"Variable '{variable}' not found in {path.name}. Available: {list(f.keys())}"
            )
        ds = f[variable]
        if ds.dtype.kind == "O":
            accuracy = [np.asarray(f[ref][()]).T for ref in ds[()].ravel()]
        else:
            accuracy = np.asarray(ds[()]).T

        class_names = None
        if "class_names" in f:
            class_names = [
                "".join(chr(c) for c in np.asarray(f[ref][()]).ravel()).strip()
                for ref in f["class_names"][()].ravel()
            ]

        region_index = np.asarray(f["region_index"][()]).ravel() if "region_index" in f else None

    logger.debug("Loaded %s via h5py (v7.3 format)", path.name)
    return accuracy, class_names, region_index


def _split_regions(accuracy: np.ndarray | list[np.ndarray]) -> list[np.ndarray]:
    """Return one ``(n_trials, n_columns)`` float matrix per region slot."""
    if isinstance(accuracy, list):
        slabs = [np.asarray(a, dtype=np.float64) for a in accuracy]
        for i, slab in enumerate(slabs, start=1):
            if slab.ndim != 2:
                raise SchemaError(f"Region slot {i}: expected a 2-D table, got shape {slab.shape}")
    else:
        arr = np.asarray(accuracy, dtype=np.float64)
        if arr.ndim != 3:
            raise SchemaError(
                f"Expected (n_trials, n_classes, n_regions) array, got shape {arr.shape}"
            )
        slabs = [arr[:, :, r] for r in range(arr.shape[2])]

    if not slabs:
        raise SchemaError("File contains no regions")
    n_columns = {slab.shape[1] for slab in slabs}
    if len(n_columns) != 1:
        raise SchemaError(f"Inconsistent class-column count across regions: {sorted(n_columns)}")
    return slabs


def _class_column_order(class_names: Optional[Sequence[str]], n_columns: int) -> list[int]:
    """Positions of ``CLASSES`` among the file's columns."""
    names = list(CLASSES) if class_names is None else list(class_names)
    if len(names) != n_columns:
        raise SchemaError(f"{len(names)} class names for {n_columns} columns")
    missing = [c for c in CLASSES if c not in names]
    if missing:
        raise SchemaError(f"Missing class column(s) {missing}; found {names}")
    if len(set(names)) != len(names) or len(names) != len(CLASSES):
        raise SchemaError(f"Expected exactly the columns {list(CLASSES)}; found {names}")
    return [names.index(c) for c in CLASSES]


def _wide_table(slab: np.ndarray, path: Path, label: str) -> pd.DataFrame:
    """Validate a region slab and wrap it as ``trial, feature1, feature2, object``."""
    if not np.all(np.isin(slab, (0.0, 1.0))):
        raise SchemaError(f"{path.name} / {label}: values must be 0 or 1")
    wide = pd.DataFrame(slab.astype(bool), columns=list(CLASSES))
    wide.insert(0, "trial", np.arange(1, slab.shape[0] + 1))
    return wide


# ---------------------------------------------------------------------------
# Reshaping
# ---------------------------------------------------------------------------


def unpivot_classes(wide: pd.DataFrame) -> pd.DataFrame:
    """Turn ``trial, feature1, feature2, object`` into ``trial, class, value``.

    Row count triples; rows are trial-major so that each trial's three
    outcomes are adjacent.
    """
    missing = [c for c in ("trial", *CLASSES) if c not in wide.columns]
    if missing:
        raise SchemaError(f"Wide table missing column(s) {missing}")
    values = wide[list(CLASSES)].to_numpy(dtype=bool)
    n = len(wide)
    return pd.DataFrame(
        {
            "trial": np.repeat(wide["trial"].to_numpy(), len(CLASSES)),
            "class": np.tile(np.array(CLASSES, dtype=object), n),
            "value": values.ravel(),
        }
    )


def pivot_classes(long: pd.DataFrame) -> pd.DataFrame:
    """Inverse of :func:`unpivot_classes` for a single region's table."""
    wide = long.pivot(index="trial", columns="class", values="value")
    wide = wide.reindex(columns=list(CLASSES)).astype(bool).reset_index()
    wide.columns.name = None
    return wide


def munge(
    paths: Iterable[Path],
    variable: str = DEFAULT_VARIABLE,
) -> pd.DataFrame:
    """Load participant files into one long-format observation table.

    Parameters
    ----------
    paths : iterable of Path
        One file per participant; position (1-based) is the participant id.
    variable : str
        Name of the accuracy variable inside each file.

    Returns
    -------
    pd.DataFrame
        Columns ``participant, region, class, trial, value``; ``value`` is
        bool, the rest categorical. One row per
        (participant, region, class, trial).
    """
    paths = [Path(p) for p in paths]
    if not paths:
        raise ValueError("munge needs at least one participant file")

    frames = []
    for participant, path in enumerate(paths, start=1):
        tables = load_participant_file(path, variable)
        for region, wide in tables.items():
            long = unpivot_classes(wide)
            long.insert(0, "region", region)
            long.insert(0, "participant", participant)
            frames.append(long)

    df = pd.concat(frames, ignore_index=True)
    df = coerce_observation_types(df)
    logger.info(
        "munge | participants=%d regions=%d rows=%d",
        len(paths), N_REGIONS, len(df),
    )
    return df[list(OBSERVATION_COLUMNS)]


def coerce_observation_types(df: pd.DataFrame) -> pd.DataFrame:
    """Apply observation-table dtypes.

    ``value`` becomes bool; ``region`` and ``class`` get the fixed
    vocabularies as categories; ``participant`` and ``trial`` get their
    sorted distinct values.
    """
    df = df.copy()
    df["value"] = df["value"].astype(bool)
    df["participant"] = pd.Categorical(df["participant"], categories=sorted(df["participant"].unique()))
    df["region"] = pd.Categorical(df["region"], categories=list(REGIONS))
    df["class"] = pd.Categorical(df["class"], categories=list(CLASSES))
    df["trial"] = pd.Categorical(df["trial"], categories=sorted(df["trial"].unique()))
    return df


def validate_observations(df: pd.DataFrame, require_value: bool = True) -> pd.DataFrame:
    """Check that ``df`` is a well-formed observation table.

    Raises
    ------
    SchemaError
        On missing columns, unknown region/class labels, an empty table or a
        repeated (participant, region, class, trial) key.
    """
    needed = list(OBSERVATION_COLUMNS) if require_value else list(OBSERVATION_COLUMNS[:-1])
    missing = [c for c in needed if c not in df.columns]
    if missing:
        raise SchemaError(f"Observation table missing column(s) {missing}")
    if df.empty:
        raise SchemaError("Observation table is empty")

    unknown_regions = set(df["region"].astype(str)) - set(REGIONS)
    if unknown_regions:
        raise SchemaError(f"Unknown region label(s) {sorted(unknown_regions)}")
    unknown_classes = set(df["class"].astype(str)) - set(CLASSES)
    if unknown_classes:
        raise SchemaError(f"Unknown class label(s) {sorted(unknown_classes)}")

    dup = df.duplicated(subset=list(OBSERVATION_COLUMNS[:-1]))
    if dup.any():
        raise SchemaError(f"{int(dup.sum())} repeated (participant, region, class, trial) rows")
    return df
