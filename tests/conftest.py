"""Shared pytest fixtures for decoding_bayes tests."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

import h5py
import numpy as np
import pandas as pd
import pytest
import scipy.io as sio

from decoding_bayes.data.regions import CLASSES, REGIONS


def make_accuracy(rng: np.random.Generator, n_trials: int, n_regions: int = 26) -> np.ndarray:
    """Random 0/1 array of shape (n_trials, 3, n_regions)."""
    return (rng.random((n_trials, 3, n_regions)) < 0.7).astype(np.float64)


def write_participant(
    path: Path,
    accuracy: np.ndarray,
    layout: str = "array",
    class_names: Optional[Sequence[str]] = None,
    region_index: Optional[Sequence[int]] = None,
    variable: str = "accuracy",
) -> Path:
    """Write a synthetic participant .mat file.

    ``layout='array'`` stores one numeric (trials, 3, regions) array;
    ``layout='cell'`` stores a cell array with one (trials, 3) matrix per region.
    ``accuracy`` may also be a list of per-region matrices for the cell layout.
    """
    if layout == "cell":
        slabs = accuracy if isinstance(accuracy, list) else [
            accuracy[:, :, r] for r in range(accuracy.shape[2])
        ]
        data = np.empty((len(slabs),), dtype=object)
        for i, slab in enumerate(slabs):
            data[i] = slab
    else:
        data = accuracy

    contents = {variable: data}
    if class_names is not None:
        names = np.empty((len(class_names),), dtype=object)
        for i, name in enumerate(class_names):
            names[i] = name
        contents["class_names"] = names
    if region_index is not None:
        contents["region_index"] = np.asarray(region_index, dtype=np.float64)
    sio.savemat(str(path), contents)
    return path


def write_participant_v73(
    path: Path,
    accuracy: np.ndarray,
    layout: str = "array",
    class_names: Optional[Sequence[str]] = None,
    region_index: Optional[Sequence[int]] = None,
    variable: str = "accuracy",
) -> Path:
    """Write a synthetic participant file in the HDF5-based '-v7.3' format.

    MATLAB stores arrays column-major, so every dataset is written
    transposed. Cells and strings live under ``#refs#`` and are referenced
    by object references; strings are uint16 character codes.
    """
    with h5py.File(str(path), "w", userblock_size=512) as f:
        refs = f.create_group("#refs#")

        if layout == "cell":
            slabs = accuracy if isinstance(accuracy, list) else [
                accuracy[:, :, r] for r in range(accuracy.shape[2])
            ]
            cell = np.empty((len(slabs), 1), dtype=h5py.ref_dtype)
            for i, slab in enumerate(slabs):
                cell[i, 0] = refs.create_dataset(f"a{i}", data=np.asarray(slab).T).ref
            f.create_dataset(variable, data=cell)
        else:
            f.create_dataset(variable, data=np.asarray(accuracy).T)

        if class_names is not None:
            names = np.empty((len(class_names), 1), dtype=h5py.ref_dtype)
            for i, name in enumerate(class_names):
                codes = np.array([ord(c) for c in name], dtype=np.uint16).reshape(-1, 1)
                names[i, 0] = refs.create_dataset(f"c{i}", data=codes).ref
            f.create_dataset("class_names", data=names)

        if region_index is not None:
            f.create_dataset(
                "region_index", data=np.asarray(region_index, dtype=np.float64).reshape(-1, 1)
            )
    return path


@pytest.fixture()
def rng():
    """Deterministic random generator."""
    return np.random.default_rng(42)


@pytest.fixture()
def write_mat(tmp_path: Path):
    """Write a participant file into ``tmp_path`` by name."""

    def _write(name: str, accuracy, **kwargs) -> Path:
        return write_participant(tmp_path / name, accuracy, **kwargs)

    return _write


@pytest.fixture()
def write_mat_v73(tmp_path: Path):
    """Write a '-v7.3' (HDF5) participant file into ``tmp_path`` by name."""

    def _write(name: str, accuracy, **kwargs) -> Path:
        return write_participant_v73(tmp_path / name, accuracy, **kwargs)

    return _write


@pytest.fixture()
def participant_files(tmp_path: Path, rng) -> tuple[list[Path], list[np.ndarray]]:
    """Two participants (5 and 4 trials), one per layout."""
    acc1 = make_accuracy(rng, 5)
    acc2 = make_accuracy(rng, 4)
    p1 = write_participant(tmp_path / "sub-01.mat", acc1, layout="array")
    p2 = write_participant(tmp_path / "sub-02.mat", acc2, layout="cell")
    return [p1, p2], [acc1, acc2]


def build_observations(
    n_participants: int, n_regions: int, n_trials: int, seed: int = 0
) -> pd.DataFrame:
    """Hand-built observation table in participant, region, trial, class order."""
    rows = []
    rng = np.random.default_rng(seed)
    for participant in range(1, n_participants + 1):
        for region in REGIONS[:n_regions]:
            for trial in range(1, n_trials + 1):
                for cls in CLASSES:
                    rows.append((participant, region, cls, trial, bool(rng.random() < 0.6)))
    df = pd.DataFrame(rows, columns=["participant", "region", "class", "trial", "value"])
    df["participant"] = pd.Categorical(df["participant"], categories=list(range(1, n_participants + 1)))
    df["region"] = pd.Categorical(df["region"], categories=list(REGIONS))
    df["class"] = pd.Categorical(df["class"], categories=list(CLASSES))
    df["trial"] = pd.Categorical(df["trial"], categories=list(range(1, n_trials + 1)))
    return df


@pytest.fixture()
def small_observations() -> pd.DataFrame:
    """2 participants × 2 regions × 2 trials × 3 classes."""
    return build_observations(2, 2, 2)


@pytest.fixture(scope="session")
def fit_observations() -> pd.DataFrame:
    """Slightly larger table for sampling: 2 participants × 3 regions × 4 trials × 3 classes."""
    return build_observations(2, 3, 4, seed=7)
