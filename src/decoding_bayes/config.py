"""
Configuration Schema and Loader
===============================

Pydantic-based configuration schema for the whole analysis: where the
participant files live, which hierarchical models to fit, their priors,
sampler settings, convergence thresholds and how posterior draws are
summarised.

Design Principles:
    - Single source of truth for all analysis parameters
    - Pydantic validation catches typos and type errors before sampling
    - Models are explicit structs (outcome, fixed terms, grouping terms,
      priors), rendered to an lme4-style formula only for display

Configuration Hierarchy::

    PipelineConfig
    ├── PathsConfig          Input directory, file pattern, output directory
    ├── SamplerConfig        NUTS draws / tune / chains / seed
    ├── DiagnosticsConfig    R-hat, ESS thresholds and strict mode
    ├── SummaryConfig        Grouping columns and draw type for intervals
    └── ModelSpec[]          One entry per model in the ladder
        ├── RandomEffectSpec[]
        └── PriorSpec per parameter group (Intercept, b, sd, cor)
"""

from __future__ import annotations

import datetime
import hashlib
import json
import subprocess
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from decoding_bayes import __version__

ParameterGroup = Literal["Intercept", "b", "sd", "cor"]
GroupName = Literal["region", "trial", "participant"]
TermName = Literal["intercept", "class"]


# ---------------------------------------------------------------------------
# Model specification
# ---------------------------------------------------------------------------


class PriorSpec(BaseModel):
    """Prior distribution for one parameter group.

    ``dist`` is the PyMC distribution name, ``params`` its keyword arguments,
    e.g. ``{"dist": "Normal", "params": {"mu": 0, "sigma": 1.5}}``.
    """

    dist: Literal[
        "Normal", "StudentT", "Cauchy",
        "HalfNormal", "HalfStudentT", "HalfCauchy", "Exponential",
        "LKJ",
    ]
    params: dict[str, float] = Field(default_factory=dict)

    def describe(self) -> str:
        args = ", ".join(f"{k}={v:g}" for k, v in self.params.items())
        return f"{self.dist}({args})"


DEFAULT_PRIORS: dict[str, PriorSpec] = {
    "Intercept": PriorSpec(dist="Normal", params={"mu": 0.0, "sigma": 1.5}),
    "b": PriorSpec(dist="Normal", params={"mu": 0.0, "sigma": 1.0}),
    "sd": PriorSpec(dist="HalfNormal", params={"sigma": 1.0}),
    "cor": PriorSpec(dist="LKJ", params={"eta": 2.0}),
}

_LOCATION_DISTS = {"Normal", "StudentT", "Cauchy"}
_SCALE_DISTS = {"HalfNormal", "HalfStudentT", "HalfCauchy", "Exponential"}


class RandomEffectSpec(BaseModel):
    """Group-varying effects for one grouping factor."""

    group: GroupName = Field(..., description="Grouping column")
    terms: list[TermName] = Field(
        default_factory=lambda: ["intercept"],
        description="Effects that vary by group: 'intercept' and/or 'class' slopes",
    )
    correlated: bool = Field(
        default=True,
        description="Model the correlation between this group's varying effects (LKJ)",
    )

    @field_validator("terms")
    @classmethod
    def _check_terms(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("random effect needs at least one term")
        if len(set(v)) != len(v):
            raise ValueError(f"duplicate random-effect terms: {v}")
        return v

    def formula_term(self) -> str:
        lhs = " + ".join("1" if t == "intercept" else t for t in self.terms)
        if "intercept" not in self.terms:
            lhs = "0 + " + lhs
        bar = "|" if self.correlated else "||"
        return f"({lhs} {bar} {self.group})"


class ModelSpec(BaseModel):
    """Declarative hierarchical logistic-regression model."""

    name: str = Field(..., description="Short model name, used for artifact paths")
    description: str = Field(default="", description="One-line description")
    outcome: Literal["value"] = Field(default="value", description="Binary outcome column")
    intercept: bool = Field(default=True, description="Population-level intercept")
    fixed_effects: list[Literal["class"]] = Field(
        default_factory=lambda: ["class"],
        description="Population-level predictors (treatment-coded indicators)",
    )
    random_effects: list[RandomEffectSpec] = Field(default_factory=list)
    priors: dict[ParameterGroup, PriorSpec] = Field(
        default_factory=dict,
        validate_default=True,
        description="Prior per parameter group; missing groups fall back to DEFAULT_PRIORS",
    )

    @field_validator("priors")
    @classmethod
    def _fill_priors(cls, v: dict[str, PriorSpec]) -> dict[str, PriorSpec]:
        merged = dict(DEFAULT_PRIORS)
        merged.update(v)
        return merged

    @model_validator(mode="after")
    def _check_structure(self) -> "ModelSpec":
        if not (self.intercept or self.fixed_effects or self.random_effects):
            raise ValueError(f"model '{self.name}' has no terms")
        groups = [re.group for re in self.random_effects]
        if len(set(groups)) != len(groups):
            raise ValueError(f"model '{self.name}': grouping factor listed twice: {groups}")
        for group_name, allowed in (
            ("Intercept", _LOCATION_DISTS),
            ("b", _LOCATION_DISTS),
            ("sd", _SCALE_DISTS),
            ("cor", {"LKJ"}),
        ):
            dist = self.priors[group_name].dist
            if dist not in allowed:
                raise ValueError(
                    f"model '{self.name}': prior '{group_name}' cannot be {dist}; "
                    f"choose one of {sorted(allowed)}"
                )
        return self

    @property
    def formula(self) -> str:
        """lme4/brms-style rendering, e.g. ``value ~ 1 + class + (1 + class | region)``."""
        rhs = ["1" if self.intercept else "0", *self.fixed_effects]
        rhs += [re.formula_term() for re in self.random_effects]
        return f"{self.outcome} ~ " + " + ".join(rhs)

    def prior(self, group: str) -> PriorSpec:
        return self.priors[group]


# ---------------------------------------------------------------------------
# Pipeline sections
# ---------------------------------------------------------------------------


class PathsConfig(BaseModel):
    """Filesystem paths."""

    data_dir: Path = Field(..., description="Directory holding one .mat file per participant")
    pattern: str = Field(default="*.mat", description="Glob for participant files")
    variable: str = Field(default="accuracy", description="Accuracy variable name inside each file")
    output_dir: Path = Field(default=Path("output"), description="Root output directory")


class SamplerConfig(BaseModel):
    """NUTS settings passed to ``pm.sample``."""

    draws: int = Field(default=1000, gt=0)
    tune: int = Field(default=1000, ge=0)
    chains: int = Field(default=4, gt=0)
    cores: int | None = Field(default=None, description="None lets PyMC decide")
    target_accept: float = Field(default=0.9, gt=0.0, lt=1.0)
    seed: int = Field(default=42, description="Random seed for sampling and posterior queries")
    log_likelihood: bool = Field(
        default=True, description="Store pointwise log-likelihood (needed for LOO)"
    )
    progressbar: bool = True


class DiagnosticsConfig(BaseModel):
    """Convergence thresholds."""

    rhat_max: float = Field(default=1.01, description="Largest acceptable R-hat")
    ess_min: float = Field(default=400.0, description="Smallest acceptable bulk/tail ESS")
    strict: bool = Field(
        default=False,
        description="Raise ConvergenceError on any divergent transition instead of warning",
    )


class SummaryConfig(BaseModel):
    """How posterior draws are summarised into intervals."""

    group_by: list[Literal["region", "class", "participant", "trial"]] = Field(
        default_factory=lambda: ["region", "class"]
    )
    kind: Literal["epred", "predict"] = Field(
        default="epred",
        description="'epred': posterior expectation of p; 'predict': simulated outcomes",
    )
    max_draws: int | None = Field(
        default=1000, description="Thin posterior to at most this many draws (None = all)"
    )


class PipelineConfig(BaseModel):
    """Top-level configuration."""

    paths: PathsConfig
    sampler: SamplerConfig = Field(default_factory=SamplerConfig)
    diagnostics: DiagnosticsConfig = Field(default_factory=DiagnosticsConfig)
    summary: SummaryConfig = Field(default_factory=SummaryConfig)
    models: list[ModelSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def _default_models(self) -> "PipelineConfig":
        if not self.models:
            from decoding_bayes.models.ladder import MODEL_LADDER

            self.models = [m.model_copy(deep=True) for m in MODEL_LADDER]
        names = [m.name for m in self.models]
        if len(set(names)) != len(names):
            raise ValueError(f"model names must be unique: {names}")
        return self

    def get_model(self, name: str) -> ModelSpec:
        for m in self.models:
            if m.name == name:
                return m
        raise KeyError(f"No model named '{name}'. Available: {[m.name for m in self.models]}")


# ---------------------------------------------------------------------------
# Loading helpers
# ---------------------------------------------------------------------------


def load_config(path: str | Path) -> PipelineConfig:
    """Load and validate a YAML config file.

    Parameters
    ----------
    path : str | Path
        Path to YAML config file.

    Returns
    -------
    PipelineConfig
        Validated configuration object.
    """
    path = Path(path)
    with open(path, "r") as f:
        raw = yaml.safe_load(f)
    return PipelineConfig(**raw)


def save_config_snapshot(cfg: PipelineConfig | BaseModel, dest: Path) -> None:
    """Save a YAML snapshot of a config (or any config section) for provenance."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    data = json.loads(cfg.model_dump_json())
    with open(dest, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def build_provenance(cfg: PipelineConfig) -> dict:
    """Build a provenance dictionary for artifact tracking.

    Returns
    -------
    dict
        Timestamp, package and library versions, config hash and git commit.
    """
    import arviz as az
    import pymc as pm

    prov: dict[str, Any] = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "decoding_bayes_version": __version__,
        "pymc_version": pm.__version__,
        "arviz_version": az.__version__,
        "config_hash": hashlib.sha256(cfg.model_dump_json().encode()).hexdigest(),
    }
    try:
        git_hash = subprocess.check_output(
            ["git", "rev-parse", "HEAD"], stderr=subprocess.DEVNULL
        ).decode().strip()
        prov["git_commit"] = git_hash
    except (OSError, subprocess.CalledProcessError):
        prov["git_commit"] = "unavailable"
    return prov
