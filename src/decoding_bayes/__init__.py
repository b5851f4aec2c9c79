"""
decoding_bayes
==============

Bayesian hierarchical models of ROI decoding accuracy: how often a
classifier trained on each of 26 visual, parietal and medial-temporal
regions labels a trial correctly, across stimulus classes, trials and
participants.

Design Principles:
    - Config-driven: model ladder, priors and sampler settings live in YAML
    - Declarative models: each model is a ``ModelSpec`` struct, not a formula string
    - PyMC does the sampling, ArviZ does diagnostics and LOO comparison
    - Pure data transformations: loading and summarising never mutate inputs

Package Layout::

    cli/          Typer CLI commands (munge, fit, compare)
    data/         Region vocabulary, .mat loading and long-format reshaping
    diagnostics/  Plotting of intervals, traces and comparisons
    eval/         Posterior-draw summaries and model comparison
    io/           Artifact persistence
    models/       PyMC model builder, fitting and posterior queries
    utils/        Logging
"""

__version__ = "0.1.0"
