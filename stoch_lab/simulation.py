"""
simulation.py - Multi-Run Experiment Driver

This module runs a model function many times, each run in its own
RunRegistry with an independent, reproducible random stream:
- ExperimentConfig: Validated experiment settings
- RunResult: Output and settings snapshot of one run
- Experiment: Sequential or thread-parallel driver
- run_experiment: Functional shortcut

Reproducibility:
---------------
Run seeds are children of `np.random.SeedSequence(base_seed)`, spawned
once per experiment. Run n always gets the n-th child, so results do not
depend on how runs are scheduled across worker threads.

Example Usage:
-------------
    >>> from stoch_lab import Normal, run_experiment
    >>>
    >>> def model(run):
    ...     service = run.register_item("Clinic", "service", Normal(5.0, 1.0))
    ...     return sum(service.sample() for _ in range(100))
    >>>
    >>> results = run_experiment(model, name="clinic", n_runs=8, max_workers=4, base_seed=1)
    >>> [r.run_number for r in results]
    [1, 2, 3, 4, 5, 6, 7, 8]
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

import numpy as np
from loguru import logger

from .config import OverrideConfig
from .io import ItemSnapshot
from .registry import RunDirectory, RunRegistry
from .samplers import SamplerRegistry, default_registry
from .types import InvalidParameterError, RunId

ModelFn = Callable[[RunRegistry], Any]


# =============================================================================
# CONFIGURATION & RESULTS
# =============================================================================

@dataclass
class ExperimentConfig:
    """
    Settings of a multi-run experiment.

    Attributes
    ----------
    name : str
        Experiment name, embedded in run ids.
    n_runs : int
        Number of runs (>= 1).
    max_workers : int
        Worker threads; 1 runs sequentially.
    base_seed : int, optional
        Root seed; None draws fresh entropy.
    engine : str
        Sampler engine name.
    overrides : OverrideConfig
        Sample-mode overrides applied to every run.
    """
    name: str = "experiment"
    n_runs: int = 1
    max_workers: int = 1
    base_seed: Optional[int] = None
    engine: str = "numpy"
    overrides: OverrideConfig = field(default_factory=OverrideConfig.empty)

    def __post_init__(self):
        if not self.name or any(c.isspace() for c in self.name):
            raise InvalidParameterError(
                f"Experiment name {self.name!r} must be non-blank without whitespace"
            )
        if self.n_runs < 1:
            raise InvalidParameterError(f"n_runs must be >= 1, got {self.n_runs}")
        if self.max_workers < 1:
            raise InvalidParameterError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.engine.lower() not in default_registry:
            raise InvalidParameterError(
                f"Unknown sampler engine '{self.engine}'. "
                f"Available: {', '.join(default_registry.list_engines())}"
            )


@dataclass
class RunResult:
    """Outcome of one run."""
    run_id: RunId
    run_number: int
    output: Any
    snapshots: List[ItemSnapshot] = field(default_factory=list)


# =============================================================================
# EXPERIMENT
# =============================================================================

class Experiment:
    """
    Runs a model function once per run of an experiment.

    Each run gets its own RunRegistry (opened in `directory`), its own
    child seed and the experiment's overrides. The model function receives
    the registry, registers its stochastic items and returns any output.
    Registrations are then finalised for the settings snapshot and the run
    is always ended, even when the model raises (the error is logged and
    re-raised).

    Parameters
    ----------
    config : ExperimentConfig
        Experiment settings.
    directory : RunDirectory, optional
        Directory to open runs in; a fresh one named after the experiment
        by default.
    samplers : SamplerRegistry, optional
        Engine registry used to build run samplers.
    """

    def __init__(
        self,
        config: ExperimentConfig,
        directory: Optional[RunDirectory] = None,
        samplers: Optional[SamplerRegistry] = None,
    ):
        self.config = config
        self.directory = directory or RunDirectory(config.name)
        self.samplers = samplers or default_registry

    def run(self, model_fn: ModelFn) -> List[RunResult]:
        """
        Execute all runs.

        Returns
        -------
        List[RunResult]
            One result per run, ordered by run number.
        """
        config = self.config
        config.overrides.log_summary()
        seeds = np.random.SeedSequence(config.base_seed).spawn(config.n_runs)
        logger.info(
            f"Starting experiment {config.name}: {config.n_runs} runs, "
            f"{config.max_workers} workers, engine {config.engine}"
        )

        if config.max_workers == 1:
            results = [
                self._run_one(model_fn, number, seed)
                for number, seed in enumerate(seeds, start=1)
            ]
        else:
            with ThreadPoolExecutor(max_workers=config.max_workers) as pool:
                futures = [
                    pool.submit(self._run_one, model_fn, number, seed)
                    for number, seed in enumerate(seeds, start=1)
                ]
                results = [future.result() for future in futures]

        logger.success(f"Experiment {config.name} finished {len(results)} runs")
        return results

    def _run_one(self, model_fn: ModelFn, number: int, seed: np.random.SeedSequence) -> RunResult:
        registry = self.directory.open_run(
            overrides=self.config.overrides,
            engine=self.config.engine,
            seed=seed,
            samplers=self.samplers,
        )
        run_id = registry.run_id
        try:
            output = model_fn(registry)
            if registry.is_finalised:
                snapshots = registry.snapshot()
            else:
                snapshots = registry.finalise_registrations()
        except Exception:
            logger.exception(f"Run {run_id} of experiment {self.config.name} failed")
            raise
        finally:
            self.directory.close_run(run_id)
        return RunResult(run_id=run_id, run_number=number, output=output, snapshots=snapshots)


def run_experiment(model_fn: ModelFn, **config_kwargs) -> List[RunResult]:
    """
    Build an ExperimentConfig from keyword arguments and run it.

    Examples
    --------
    >>> results = run_experiment(model, name="ward", n_runs=4, base_seed=3)
    """
    return Experiment(ExperimentConfig(**config_kwargs)).run(model_fn)
