"""
Model comparison by approximate leave-one-out cross-validation.

ArviZ's ``compare`` ranks models by expected log pointwise predictive
density (``elpd_loo``) and reports, relative to the best model, the
difference ``elpd_diff`` and its standard error ``dse``. A difference
smaller than about two ``dse`` is not a meaningful preference.
"""

from __future__ import annotations

from typing import Literal, Mapping

import arviz as az
import pandas as pd

from decoding_bayes.models.fit import FittedModel
from decoding_bayes.utils.logging import get_logger, log

logger = get_logger(__name__)


def compare_models(
    fits: Mapping[str, FittedModel | az.InferenceData],
    ic: Literal["loo", "waic"] = "loo",
    scale: Literal["log", "negative_log", "deviance"] = "log",
) -> pd.DataFrame:
    """Rank two or more fitted models by predictive accuracy.

    Parameters
    ----------
    fits : mapping of name → FittedModel or InferenceData
        Each trace must carry a ``log_likelihood`` group.
    ic : {'loo', 'waic'}
        Information criterion.
    scale : str
        ArviZ score scale.

    Returns
    -------
    pd.DataFrame
        ArviZ comparison table indexed by model name (``rank``,
        ``elpd_<ic>``, ``p_<ic>``, ``elpd_diff``, ``weight``, ``se``,
        ``dse``, ``warning``, ``scale``).
    """
    if len(fits) < 2:
        raise ValueError(f"Need at least two models to compare, got {len(fits)}")

    idatas = {}
    for name, fit in fits.items():
        idata = fit.idata if isinstance(fit, FittedModel) else fit
        if "log_likelihood" not in idata.groups():
            raise ValueError(
                f"Model '{name}' has no log_likelihood group; "
                "refit with sampler.log_likelihood=True"
            )
        idatas[name] = idata

    logger.info("compare | ic=%s models=%s", ic, list(idatas))
    table = az.compare(idatas, ic=ic, scale=scale)

    for name, row in table.iterrows():
        log(
            f"compare | model={name} rank={int(row['rank'])} "
            f"elpd_{ic}={row[f'elpd_{ic}']:.1f} elpd_diff={row['elpd_diff']:.1f} "
            f"dse={row['dse']:.1f}",
            severity="metric",
        )
    return table
