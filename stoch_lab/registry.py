"""
registry.py - Run-Scoped Registration of Stochastic Items

This module provides:
- RunRegistry: Everything one run needs for its stochastic items, namely the
  resolved overrides, the lazily created sampler, and the list of
  registered items that are deregistered at run end
- RunDirectory: A thread-safe directory of the live RunRegistry objects of
  an experiment, allocating run ids

Registration Protocol:
---------------------
1. The item asks to be registered under an identity (`Owner.id`, or the
   owner's ALL group)
2. The registry rejects the item if it is already registered, or if the run
   is finalised or closed
3. The sample mode is resolved from the overrides (ALL, then Owner.ALL,
   then Owner.id)
4. The run's sampler is created on first use and bound to the item together
   with the identity and run id
5. `end_run()` deregisters every recorded item exactly once

Example Usage:
-------------
    >>> from stoch_lab import OverrideConfig, Poisson, RunRegistry
    >>>
    >>> overrides = OverrideConfig.from_text("ALL = COLLAPSE_MID")
    >>> with RunRegistry("run-1", overrides=overrides, seed=7) as run:
    ...     arrivals = run.register_item("Clinic", "arrivals", Poisson(2.5))
    ...     arrivals.sample()
    3
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from loguru import logger

from .access import AccessInfo, Owner, register_accessor_free
from .config import OverrideConfig
from .distributions import StochasticItem
from .io import ItemSnapshot, snapshot_item
from .samplers import Sampler, SamplerFactory, SamplerRegistry, SeedLike, default_registry
from .types import (
    InvalidParameterError,
    RegistrationError,
    RunId,
    SampleMode,
    UnsupportedDistributionError,
)


# =============================================================================
# RUN REGISTRY
# =============================================================================

class RunRegistry:
    """
    Registration scope of a single run.

    Parameters
    ----------
    run_id : str
        Explicit identifier of the run. All per-run state is keyed by it.
    overrides : OverrideConfig, optional
        Sample-mode overrides; none by default.
    engine : str, default="numpy"
        Sampler engine name looked up in `samplers` (ignored when
        `sampler_factory` is given).
    seed : int or SeedSequence, optional
        Seed for the run's sampler.
    sampler_factory : callable, optional
        `factory(seed) -> Sampler`, overriding the engine lookup.
    samplers : SamplerRegistry, optional
        Engine registry; the module default if omitted.

    Raises
    ------
    InvalidParameterError
        If the run id is blank.
    KeyError
        If the engine is unknown.
    """

    def __init__(
        self,
        run_id: RunId,
        overrides: Optional[OverrideConfig] = None,
        engine: str = "numpy",
        seed: SeedLike = None,
        sampler_factory: Optional[SamplerFactory] = None,
        samplers: Optional[SamplerRegistry] = None,
    ):
        if not isinstance(run_id, str) or not run_id.strip():
            raise InvalidParameterError(f"Run id {run_id!r} must be a non-blank string")
        self._run_id = run_id
        self._overrides = overrides if overrides is not None else OverrideConfig.empty()
        if sampler_factory is None:
            sampler_factory = (samplers or default_registry).get(engine).factory
        self._engine = engine
        self._seed = seed
        self._sampler_factory = sampler_factory
        self._sampler: Optional[Sampler] = None
        # id(item) -> (item, identity), in registration order
        self._entries: Dict[int, Tuple[StochasticItem, AccessInfo]] = {}
        self._finalised = False
        self._closed = False
        logger.debug(f"Opened run {run_id}")

    @property
    def run_id(self) -> RunId:
        return self._run_id

    @property
    def overrides(self) -> OverrideConfig:
        return self._overrides

    @property
    def engine(self) -> str:
        return self._engine

    @property
    def seed(self) -> SeedLike:
        return self._seed

    @property
    def sampler(self) -> Sampler:
        """The run's sampler, created on first access."""
        if self._sampler is None:
            self._sampler = self._sampler_factory(self._seed)
            logger.debug(f"Created sampler {self._sampler!r} for run {self._run_id}")
        return self._sampler

    @property
    def is_finalised(self) -> bool:
        return self._finalised

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def registered_items(self) -> List[StochasticItem]:
        return [item for item, _ in self._entries.values()]

    def __len__(self) -> int:
        return len(self._entries)

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(self, item: StochasticItem, access_info: AccessInfo) -> Sampler:
        """
        Register an item under an identity for this run.

        Parameters
        ----------
        item : StochasticItem
            Distribution or lookup to register.
        access_info : AccessInfo
            Identity to register it under (an Accessor for shared items).

        Returns
        -------
        Sampler
            The run's sampler, now bound to the item.

        Raises
        ------
        RegistrationError
            If the run is closed or finalised, the item is already
            registered, or the identity already has an item for this run.
        UnsupportedDistributionError
            If the item samples normally and the sampler cannot serve its
            families.
        """
        if self._closed:
            raise RegistrationError(
                f"Run {self._run_id} has ended; can't register {access_info.full_id}"
            )
        if self._finalised:
            raise RegistrationError(
                f"Stochastic item registrations finalised for run {self._run_id}; "
                f"can't register {access_info.full_id}"
            )
        if id(item) in self._entries:
            raise RegistrationError(
                f"Stochastic item {item!r} already registered for run {self._run_id}"
            )
        if item.is_registered:
            raise RegistrationError(
                f"Stochastic item {item!r} already registered as {item.qualified_id} "
                f"for run {item.run_id}"
            )
        for part in item.registered_parts():
            raise RegistrationError(
                f"Stochastic item {item!r} holds {part!r}, already registered as "
                f"{part.qualified_id} for run {part.run_id}"
            )

        mode =self._overrides.resolve(access_info.owner_name, access_info.item_id)
        sampler = self.sampler
        if mode is SampleMode.NORMAL:
            missing = [f for f in item.required_families() if not sampler.supports(f)]
            if missing:
                raise UnsupportedDistributionError(
                    f"Sampler {sampler!r} can't serve {sorted(f.name for f in missing)} "
                    f"needed by {access_info.full_id}"
                )

        access_info._attach(self._run_id, item, mode)
        item._bind(access_info, sampler, self._run_id)
        self._entries[id(item)] = (item, access_info)

        message = f"{access_info.full_id} stochastic item {item!r} set up for run {self._run_id}"
        if mode is not SampleMode.NORMAL:
            message += f" --> overridden sample mode {mode.name}"
        logger.info(message)
        return sampler

    def register_item(
        self, owner: Owner, item_id: Optional[str], item: StochasticItem
    ) -> StochasticItem:
        """Register an item of a singleton owner (see `register_accessor_free`)."""
        return register_accessor_free(self, owner, item_id, item)

    # -------------------------------------------------------------------------
    # Finalisation & teardown
    # -------------------------------------------------------------------------

    def snapshot(self) -> List[ItemSnapshot]:
        """Settings snapshot of every registered item, in registration order."""
        return [snapshot_item(item) for item, _ in self._entries.values()]

    def finalise_registrations(self) -> List[ItemSnapshot]:
        """
        Refuse further registrations and return the settings snapshot.

        Calling it again logs a warning and returns a fresh snapshot.
        """
        if self._finalised:
            logger.warning(f"Registrations for run {self._run_id} already finalised")
            return self.snapshot()
        self._finalised = True
        snapshots = self.snapshot()
        logger.info(
            f"Finalised {len(snapshots)} stochastic item registrations for run {self._run_id}"
        )
        return snapshots

    def end_run(self) -> None:
        """
        Deregister every item registered for this run.

        Raises
        ------
        AssertionError
            If the run has already ended, or an identity no longer knows
            one of the items (double deregistration). Every item is still
            unbound and the run closed before the first such error is
            raised.
        """
        if self._closed:
            raise AssertionError(f"Run {self._run_id} already ended")
        self._closed = True
        failure: Optional[AssertionError] = None
        try:
            for item, access_info in self._entries.values():
                try:
                    access_info._detach(self._run_id, item)
                    logger.debug(f"Deregistered {access_info.full_id} from run {self._run_id}")
                except AssertionError as e:
                    logger.error(f"Deregistering {access_info.full_id} from run {self._run_id}: {e}")
                    failure = failure or e
                finally:
                    item._unbind()
        finally:
            count = len(self._entries)
            self._entries.clear()
            logger.debug(f"Closed run {self._run_id} ({count} items deregistered)")
        if failure is not None:
            raise failure

    def __enter__(self) -> "RunRegistry":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self._closed:
            self.end_run()

    def __repr__(self) -> str:
        state = "closed" if self._closed else ("finalised" if self._finalised else "open")
        return f"RunRegistry({self._run_id!r}, {len(self._entries)} items, {state})"


# =============================================================================
# RUN DIRECTORY
# =============================================================================

class RunDirectory:
    """
    Live runs of one experiment, keyed by run id.

    Safe for concurrent open/get/close from the threads of parallel runs.
    Allocated run ids have the form `<yyyymmddHHMMSS>-<experiment>-<n>` with
    n counting from 1.

    Parameters
    ----------
    experiment_name : str
        Name embedded in run ids (no whitespace).
    clock : callable, optional
        Returns the current datetime; `datetime.now` by default.
    """

    def __init__(self, experiment_name: str, clock: Optional[Callable[[], datetime]] = None):
        if not experiment_name or any(c.isspace() for c in experiment_name):
            raise InvalidParameterError(
                f"Experiment name {experiment_name!r} must be non-blank without whitespace"
            )
        self._experiment = experiment_name
        self._clock = clock or datetime.now
        self._runs: Dict[RunId, RunRegistry] = {}
        self._counter = 0
        self._lock = threading.Lock()

    @property
    def experiment_name(self) -> str:
        return self._experiment

    def new_run_id(self) -> RunId:
        with self._lock:
            self._counter += 1
            number = self._counter
        stamp = self._clock().strftime("%Y%m%d%H%M%S")
        return f"{stamp}-{self._experiment}-{number}"

    def open_run(self, run_id: Optional[RunId] = None, **registry_kwargs) -> RunRegistry:
        """
        Create and record a RunRegistry.

        Parameters
        ----------
        run_id : str, optional
            Explicit run id; allocated when omitted.
        **registry_kwargs
            Passed to RunRegistry (overrides, engine, seed, ...).

        Raises
        ------
        RegistrationError
            If a run with that id is already open.
        """
        run_id = run_id or self.new_run_id()
        registry = RunRegistry(run_id, **registry_kwargs)
        with self._lock:
            if run_id in self._runs:
                raise RegistrationError(f"Run {run_id} is already open")
            self._runs[run_id] = registry
        return registry

    def get(self, run_id: RunId) -> RunRegistry:
        with self._lock:
            registry = self._runs.get(run_id)
        if registry is None:
            raise RegistrationError(f"No open run {run_id}")
        return registry

    def close_run(self, run_id: RunId) -> None:
        """End the run (deregistering its items) and forget it."""
        with self._lock:
            registry = self._runs.pop(run_id, None)
        if registry is None:
            raise RegistrationError(f"No open run {run_id}")
        if not registry.is_closed:
            registry.end_run()

    def active_run_ids(self) -> List[RunId]:
        with self._lock:
            return list(self._runs)

    def __contains__(self, run_id: RunId) -> bool:
        with self._lock:
            return run_id in self._runs

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)

    def __repr__(self) -> str:
        return f"RunDirectory({self._experiment!r}, {len(self)} open runs)"
