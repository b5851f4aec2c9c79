"""
Hierarchical Logistic Model Builder
===================================

Turns a declarative ``ModelSpec`` into a PyMC model of binary decoding
outcomes.

Design Principles:
    - Logit link, Bernoulli likelihood on ``value`` with one ``obs`` dim
    - Population part: intercept + treatment-coded class indicators
      (reference = first class present, normally ``feature1``)
    - Group part: non-centred offsets ``z ~ Normal(0, 1)`` per (level, term),
      scaled by per-term SDs or by an LKJ Cholesky factor when correlated
    - Trials are nested in participants: the ``trial`` grouping key is
      participant/trial, so trial 3 of two participants are different levels

Parameter naming (one set per grouping factor ``g``)::

    Intercept, b_class            population effects
    z_g                           standard-normal offsets   (g_level, g_term)
    sd_g                          SD of each varying term   (g_term,)
    cor_g                         correlation matrix        (g_term, g_term_other)
    r_g                           group effects             (g_level, g_term)
    p                             P(correct) per obs        (obs,)   [expectation only]
"""

from __future__ import annotations

import numpy as np
import pandas as pd
import pymc as pm
import pytensor.tensor as pt

from decoding_bayes.config import ModelSpec, PriorSpec, RandomEffectSpec
from decoding_bayes.data.loader import validate_observations
from decoding_bayes.data.regions import CLASSES
from decoding_bayes.utils.logging import get_logger

logger = get_logger(__name__)


def make_prior(spec: PriorSpec, name: str, **kwargs) -> pt.TensorVariable:
    """Create a named PyMC random variable from a ``PriorSpec``."""
    return getattr(pm, spec.dist)(name, **spec.params, **kwargs)


def prior_dist(spec: PriorSpec, **kwargs) -> pt.TensorVariable:
    """Unnamed ``.dist`` version of :func:`make_prior` (for ``sd_dist``)."""
    return getattr(pm, spec.dist).dist(**spec.params, **kwargs)


def class_levels(observations: pd.DataFrame) -> list[str]:
    """Classes present in the table, in ``CLASSES`` order."""
    present = set(observations["class"].astype(str))
    return [c for c in CLASSES if c in present]


def class_indicators(observations: pd.DataFrame, levels: list[str]) -> np.ndarray:
    """Treatment-coded indicator matrix ``(n_obs, len(levels) - 1)``."""
    cls = observations["class"].astype(str).to_numpy()
    if len(levels) < 2:
        return np.zeros((len(cls), 0))
    return np.column_stack([cls == level for level in levels[1:]]).astype(np.float64)


def group_codes(observations: pd.DataFrame, group: str) -> tuple[np.ndarray, list[str]]:
    """Integer level code per observation, and the level labels.

    ``region`` and ``participant`` keep their categorical order; ``trial``
    is keyed by participant/trial in order of appearance.
    """
    if group == "trial":
        key = observations["participant"].astype(str) + "/" + observations["trial"].astype(str)
        codes, uniques = pd.factorize(key, sort=False)
        return codes.astype(np.int64), [str(u) for u in uniques]

    cat = pd.Categorical(observations[group]).remove_unused_categories()
    return cat.codes.astype(np.int64), [str(c) for c in cat.categories]


def term_matrix(
    terms: list[str], indicators: np.ndarray, levels: list[str]
) -> tuple[np.ndarray, list[str]]:
    """Design columns for a group's varying terms, with display names."""
    n = indicators.shape[0]
    cols, names = [], []
    for term in terms:
        if term == "intercept":
            cols.append(np.ones((n, 1)))
            names.append("Intercept")
        elif indicators.shape[1]:
            cols.append(indicators)
            names.extend(f"class[{lvl}]" for lvl in levels[1:])
    if not cols:
        raise ValueError(f"No design columns for terms {terms} (only one class present?)")
    return np.hstack(cols), names


def _group_effect(
    spec: ModelSpec,
    effect: RandomEffectSpec,
    observations: pd.DataFrame,
    indicators: np.ndarray,
    levels: list[str],
    model: pm.Model,
) -> pt.TensorVariable:
    """Add one grouping factor's varying effects and return its linear-predictor term."""
    g = effect.group
    codes, group_levels = group_codes(observations, g)
    Z, term_names = term_matrix(effect.terms, indicators, levels)
    k = len(term_names)

    level_dim, term_dim = f"{g}_level", f"{g}_term"
    model.add_coord(level_dim, group_levels)
    model.add_coord(term_dim, term_names)

    z = pm.Normal(f"z_{g}", 0.0, 1.0, dims=(level_dim, term_dim))

    if effect.correlated and k > 1:
        model.add_coord(f"{term_dim}_other", term_names)
        chol, corr, stds = pm.LKJCholeskyCov(
            f"chol_{g}",
            n=k,
            eta=spec.prior("cor").params.get("eta", 1.0),
            sd_dist=prior_dist(spec.prior("sd"), shape=k),
            compute_corr=True,
            store_in_trace=False,
        )
        pm.Deterministic(f"sd_{g}", stds, dims=term_dim)
        pm.Deterministic(f"cor_{g}", corr, dims=(term_dim, f"{term_dim}_other"))
        r = pm.Deterministic(f"r_{g}", pt.dot(z, chol.T), dims=(level_dim, term_dim))
    else:
        sd = make_prior(spec.prior("sd"), f"sd_{g}", dims=term_dim)
        r = pm.Deterministic(f"r_{g}", z * sd, dims=(level_dim, term_dim))

    logger.debug("group effect | group=%s levels=%d terms=%s", g, len(group_levels), term_names)
    return (r[codes] * Z).sum(axis=1)


def build_model(
    spec: ModelSpec,
    observations: pd.DataFrame,
    expectation: bool = False,
) -> pm.Model:
    """Build the PyMC model described by ``spec`` for ``observations``.

    Parameters
    ----------
    spec : ModelSpec
        Declarative model structure and priors.
    observations : pd.DataFrame
        Long-format table from :func:`decoding_bayes.data.loader.munge`.
        Row order defines the ``obs`` dimension.
    expectation : bool
        Also add the deterministic ``p`` (posterior expectation per obs).

    Returns
    -------
    pm.Model
    """
    obs = validate_observations(observations)
    n = len(obs)
    y = obs[spec.outcome].to_numpy().astype(np.int8)
    levels = class_levels(obs)
    X = class_indicators(obs, levels)

    with pm.Model(coords={"obs": np.arange(n)}) as model:
        eta = pt.zeros((n,))

        if spec.intercept:
            eta = eta + make_prior(spec.prior("Intercept"), "Intercept")

        if "class" in spec.fixed_effects and X.shape[1]:
            model.add_coord("class_effect", levels[1:])
            b = make_prior(spec.prior("b"), "b_class", dims="class_effect")
            eta = eta + pt.dot(X, b)

        for effect in spec.random_effects:
            eta = eta + _group_effect(spec, effect, obs, X, levels, model)

        pm.Bernoulli(spec.outcome, logit_p=eta, observed=y, dims="obs")

        if expectation:
            pm.Deterministic("p", pm.math.invlogit(eta), dims="obs")

    logger.info(
        "build | model=%s formula='%s' n_obs=%d free_rvs=%d",
        spec.name, spec.formula, n, len(model.free_RVs),
    )
    return model
