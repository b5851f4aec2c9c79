"""
The model ladder: increasingly complex hierarchical logistic regressions of
decoding accuracy, each one adding a single structural idea to the last.

    intercepts       value ~ 1 + (1 | region)
    class_fixed      value ~ 1 + class + (1 | region)
    class_by_region  value ~ 1 + class + (1 + class | region)
    trial            ... + (1 | trial)
    participant      ... + (1 + class | participant)
    uncorrelated     participant model with independent varying effects
"""

from __future__ import annotations

from decoding_bayes.config import ModelSpec, RandomEffectSpec

_REGION_SLOPES = RandomEffectSpec(group="region", terms=["intercept", "class"])
_TRIAL = RandomEffectSpec(group="trial", terms=["intercept"])
_PARTICIPANT = RandomEffectSpec(group="participant", terms=["intercept", "class"])

MODEL_LADDER: tuple[ModelSpec, ...] = (
    ModelSpec(
        name="intercepts",
        description="Regions differ in overall accuracy",
        fixed_effects=[],
        random_effects=[RandomEffectSpec(group="region")],
    ),
    ModelSpec(
        name="class_fixed",
        description="Classes differ in accuracy, the same way in every region",
        random_effects=[RandomEffectSpec(group="region")],
    ),
    ModelSpec(
        name="class_by_region",
        description="Class differences vary by region",
        random_effects=[_REGION_SLOPES],
    ),
    ModelSpec(
        name="trial",
        description="Some trials are decoded better across all regions",
        random_effects=[_REGION_SLOPES, _TRIAL],
    ),
    ModelSpec(
        name="participant",
        description="Participants differ in accuracy and class differences",
        random_effects=[_REGION_SLOPES, _TRIAL, _PARTICIPANT],
    ),
    ModelSpec(
        name="uncorrelated",
        description="Participant model without correlations between varying effects",
        random_effects=[
            _REGION_SLOPES.model_copy(update={"correlated": False}),
            _TRIAL,
            _PARTICIPANT.model_copy(update={"correlated": False}),
        ],
    ),
)


def get_ladder_model(name: str) -> ModelSpec:
    """Return a copy of the ladder model called ``name``."""
    for spec in MODEL_LADDER:
        if spec.name == name:
            return spec.model_copy(deep=True)
    raise KeyError(f"No ladder model '{name}'. Available: {[m.name for m in MODEL_LADDER]}")
