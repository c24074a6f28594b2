"""
conftest.py - Pytest Configuration and Shared Fixtures

This file contains fixtures used across all test modules. Fixtures are
organized by category:
- Random number generators (for reproducibility)
- Stub samplers (fixed or scripted draws)
- Run registries (normal, collapsed, scripted)
- Log capture (loguru -> caplog bridge)
"""

from typing import Iterable, List

import pytest
import numpy as np
from loguru import logger

from stoch_lab import (
    NumpySampler,
    OverrideConfig,
    RunRegistry,
    SampleMode,
)


# =============================================================================
# RANDOM NUMBER GENERATORS
# =============================================================================

@pytest.fixture
def rng():
    """
    Provide a seeded random number generator for reproducible tests.
    """
    return np.random.default_rng(seed=42)


# =============================================================================
# STUB SAMPLERS
# =============================================================================

class FixedDrawSampler(NumpySampler):
    """
    NumpySampler whose unit draws are fixed.

    `draw` feeds Bernoulli trials and U[0,1) draws (custom categorical
    scans). Other families still use the seeded generator. `calls` counts
    how often the stub was consulted.
    """

    def __init__(self, draw: float = 0.5, seed=0):
        super().__init__(seed)
        self.draw = draw
        self.calls = 0

    def unit_draw(self) -> float:
        self.calls += 1
        return self.draw

    def sample_uniform(self, low: float, high: float) -> float:
        self.calls += 1
        return low + (high - low) * self.draw


class ScriptedOrdinalSampler(NumpySampler):
    """NumpySampler returning scripted discrete-uniform ordinals in turn."""

    def __init__(self, ordinals: Iterable[int], seed=0):
        super().__init__(seed)
        self.ordinals: List[int] = list(ordinals)

    def sample_uniform_discrete(self, k: int) -> int:
        return self.ordinals.pop(0)


@pytest.fixture
def fixed_draw_sampler():
    """A FixedDrawSampler with draw 0.5 (tests adjust `.draw`)."""
    return FixedDrawSampler(draw=0.5)


# =============================================================================
# RUN REGISTRIES
# =============================================================================

@pytest.fixture
def make_run():
    """
    Factory for RunRegistry objects that are ended at teardown.

    Usage: make_run("run-1", overrides=..., sampler=stub, seed=...)
    """
    runs = []

    def _make(run_id="test-run", overrides=None, sampler=None, **kwargs):
        if isinstance(overrides, dict):
            overrides = OverrideConfig.from_mapping(overrides)
        if sampler is not None:
            kwargs["sampler_factory"] = lambda seed: sampler
        registry = RunRegistry(run_id, overrides=overrides, **kwargs)
        runs.append(registry)
        return registry

    yield _make

    for registry in runs:
        if not registry.is_closed:
            registry.end_run()


@pytest.fixture
def run(make_run):
    """A normal-mode run with a seeded numpy sampler."""
    return make_run("test-run", seed=42)


@pytest.fixture
def collapsed_run(make_run):
    """A run with every item collapsed (ALL = COLLAPSE_MID) and a dummy sampler."""
    return make_run(
        "collapsed-run",
        overrides={"ALL": SampleMode.COLLAPSE_MID},
        engine="dummy",
    )


# =============================================================================
# LOG CAPTURE
# =============================================================================

@pytest.fixture
def caplog(caplog):
    """
    Route loguru records into pytest's caplog.

    stoch_lab logs through loguru, which bypasses the logging module.
    """
    handler_id = logger.add(caplog.handler, format="{message}", level=0)
    yield caplog
    logger.remove(handler_id)
