"""
Region and class vocabularies.

Key choices:
  - 26 retinotopic / parietal / medial-temporal regions in a fixed display order
  - Source files encode a region by its 1-based position in this list
  - Three decoding targets per region: two stimulus features and object identity
Assumptions:
  - Order matters for consistent display, not for modelling
  - An index outside 1..26 is a malformed file, never silently dropped
"""

from __future__ import annotations

from typing import Iterable

import numpy as np

from decoding_bayes.errors import SchemaError

REGIONS: tuple[str, ...] = (
    "V1v", "V1d", "V2v", "V2d", "V3v", "V3d", "hV4", "VO1", "VO2", "PHC12",
    "TO2", "TO1", "LO2", "LO1", "V3AB", "IPS0", "IPS1", "IPS2", "IPS3", "IPS4",
    "IPS5", "SPL1", "FEF", "PHC", "PRC", "HC",
)

CLASSES: tuple[str, ...] = ("feature1", "feature2", "object")

N_REGIONS = len(REGIONS)


def region_label(index: int) -> str:
    """Map a 1-based region index to its label.

    Raises
    ------
    SchemaError
        If ``index`` is not an integer in 1..26.
    """
    if isinstance(index, (bool, np.bool_)) or int(index) != index:
        raise SchemaError(f"region index must be an integer, got {index!r}")
    index = int(index)
    if not 1 <= index <= N_REGIONS:
        raise SchemaError(f"region index {index} outside 1..{N_REGIONS}")
    return REGIONS[index - 1]


def region_labels(indices: Iterable[int]) -> list[str]:
    """Map a sequence of 1-based region indices to labels.

    Every index must be valid and distinct, so that no two source slots
    collapse onto the same region.
    """
    indices = list(indices)
    labels = [region_label(i) for i in indices]
    seen: set[str] = set()
    for idx, label in zip(indices, labels):
        if label in seen:
            raise SchemaError(f"region index {idx} ({label}) appears more than once")
        seen.add(label)
    return labels
