"""
access.py - Stochastic Item Identity and Per-Run Binding

This module provides:
- AccessInfo: The stable qualified identity (`Owner.id`) of a stochastic
  item plus its resolved SampleMode for each run it is live in
- Accessor: An AccessInfo shared by all instances of a model class that
  maps each run id to the item instance registered for that run
- register_accessor_free: Registration for items of singleton owners that
  need no shared accessor

Concurrency:
-----------
Several runs of the same model can be live at once, each in its own
thread(s), and a run may hop threads. Every per-run map here is keyed by an
explicit run id and guarded by a lock; nothing reads thread-local state.

Example Usage:
-------------
    >>> from stoch_lab import Accessor, Exponential, RunRegistry
    >>>
    >>> class Clinic:
    ...     arrivals = Accessor()          # qualified id "Clinic.arrivals"
    ...
    ...     def __init__(self, run):
    ...         Clinic.arrivals.add_for_run(run, Exponential(mean=4.0))
    ...
    ...     def next_arrival(self, run):
    ...         return Clinic.arrivals.get_for_run(run).sample()
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Dict, List, Optional, Union

from .types import (
    ALL_GROUP_ID,
    InvalidParameterError,
    ProtocolViolationError,
    RegistrationError,
    RunId,
    SampleMode,
    UnregisteredItemError,
)

if TYPE_CHECKING:
    from .distributions import StochasticItem
    from .registry import RunRegistry

Owner = Union[type, str]
RunRef = Union["RunRegistry", RunId]


def _owner_name(owner: Owner) -> str:
    name = owner.__name__ if isinstance(owner, type) else owner
    if not isinstance(name, str) or not name.strip():
        raise InvalidParameterError(f"Owner {owner!r} has no usable name")
    if "." in name or name != name.strip():
        raise InvalidParameterError(f"Owner name '{name}' must be a simple name without dots")
    return name


def _item_id(item_id: Optional[str]) -> str:
    if item_id is None:
        return ALL_GROUP_ID
    if not isinstance(item_id, str) or not item_id.strip():
        raise InvalidParameterError(f"Item id {item_id!r} must be a non-blank string")
    if "." in item_id or item_id != item_id.strip():
        raise InvalidParameterError(f"Item id '{item_id}' must be a simple name without dots")
    return item_id


def run_id_of(run: RunRef) -> RunId:
    """Run id of a RunRegistry, or the id itself."""
    run_id = getattr(run, "run_id", run)
    if not isinstance(run_id, str) or not run_id:
        raise InvalidParameterError(f"{run!r} is neither a run registry nor a run id")
    return run_id


# =============================================================================
# ACCESS INFO
# =============================================================================

class AccessInfo:
    """
    Qualified identity of a stochastic item and its per-run sample mode.

    Parameters
    ----------
    owner : type or str
        Owning model class (or its simple name).
    item_id : str, optional
        Item id within the owner. None puts the item in the owner's "ALL"
        group, governed only by the `ALL` and `Owner.ALL` overrides.

    Notes
    -----
    The sample mode is resolved by the run registry and set exactly once
    per run; it is removed again when the run ends.
    """

    def __init__(self, owner: Optional[Owner], item_id: Optional[str] = None):
        self._owner = owner
        self._owner_name = _owner_name(owner) if owner is not None else None
        self._id = _item_id(item_id) if owner is not None else item_id
        self._modes: Dict[RunId, SampleMode] = {}
        self._lock = threading.Lock()

    @property
    def owner(self) -> Owner:
        self._require_identity()
        return self._owner

    @property
    def owner_name(self) -> str:
        self._require_identity()
        return self._owner_name

    @property
    def item_id(self) -> str:
        self._require_identity()
        return self._id

    @property
    def full_id(self) -> str:
        """Qualified name `Owner.id`."""
        self._require_identity()
        return f"{self._owner_name}.{self._id}"

    def _require_identity(self) -> None:
        if self._owner_name is None:
            raise ProtocolViolationError(
                "Accessor has no owner; declare it as a class attribute or pass the owner"
            )

    # -------------------------------------------------------------------------
    # Per-run state
    # -------------------------------------------------------------------------

    def mode_for_run(self, run: RunRef) -> SampleMode:
        """
        Resolved sample mode for a run.

        Raises
        ------
        UnregisteredItemError
            If nothing is registered under this identity for the run.
        """
        run_id = run_id_of(run)
        with self._lock:
            mode = self._modes.get(run_id)
        if mode is None:
            raise UnregisteredItemError(f"{self.full_id} not registered for run {run_id}")
        return mode

    def is_live_for_run(self, run: Optional[RunRef]) -> bool:
        if run is None:
            return False
        with self._lock:
            return run_id_of(run) in self._modes

    def _attach(self, run_id: RunId, item: "StochasticItem", mode: SampleMode) -> None:
        """Record the resolved mode for a run (called by the run registry)."""
        with self._lock:
            if run_id in self._modes:
                raise RegistrationError(
                    f"{self.full_id} already registered for run {run_id}"
                )
            self._modes[run_id] = mode

    def _detach(self, run_id: RunId, item: "StochasticItem") -> None:
        """Forget a run's registration; unknown or repeated removal is a fault."""
        with self._lock:
            if run_id not in self._modes:
                raise AssertionError(
                    f"Deregistering {item!r} ({self.full_id}) which is not registered "
                    f"for run {run_id}"
                )
            del self._modes[run_id]

    def __repr__(self) -> str:
        if self._owner_name is None:
            return f"{type(self).__name__}(<unbound>)"
        return f"{type(self).__name__}({self.full_id})"


# =============================================================================
# ACCESSOR
# =============================================================================

class Accessor(AccessInfo):
    """
    Shared identity mapping each run to the item registered for that run.

    Declare one per stochastic quantity as a class attribute of the owning
    model class; owner and id are taken from the attribute:

        class Clinic:
            arrivals = Accessor()              # Clinic.arrivals
            triage = Accessor(item_id="triage_mix")

    Each model instance then registers its run's item with `add_for_run`
    and samples through `get_for_run`.

    Parameters
    ----------
    owner : type or str, optional
        Owning class; taken from the class body when omitted.
    item_id : str, optional
        Item id; defaults to the attribute name when declared in a class.
    """

    def __init__(self, owner: Optional[Owner] = None, item_id: Optional[str] = None):
        super().__init__(owner, item_id)
        self._items: Dict[RunId, "StochasticItem"] = {}

    def __set_name__(self, owner: type, name: str) -> None:
        if self._owner is None:
            self._owner = owner
            self._owner_name = _owner_name(owner)
            self._id = _item_id(self._id if self._id is not None else name)

    def add_for_run(self, run: "RunRegistry", item: "StochasticItem") -> "StochasticItem":
        """
        Register an item for the run and make it reachable by run id.

        Parameters
        ----------
        run : RunRegistry
            The run's registry (supplies the override and the sampler).
        item : StochasticItem
            The run's instance of this quantity.

        Returns
        -------
        StochasticItem
            The item, now registered.

        Raises
        ------
        RegistrationError
            If an item is already registered for this run id, or the item
            itself is already registered.
        """
        run.register(item, self)
        return item

    def get_for_run(self, run: RunRef) -> "StochasticItem":
        """
        The item registered for a run.

        Raises
        ------
        RegistrationError
            If no item is registered for the run.
        """
        run_id = run_id_of(run)
        with self._lock:
            item = self._items.get(run_id)
        if item is None:
            raise RegistrationError(f"{self.full_id} not registered for run {run_id}")
        return item

    def has_run(self, run: RunRef) -> bool:
        with self._lock:
            return run_id_of(run) in self._items

    def run_ids(self) -> List[RunId]:
        """Ids of runs with a live registration, sorted."""
        with self._lock:
            return sorted(self._items)

    def _attach(self, run_id, item, mode):
        with self._lock:
            if run_id in self._items:
                raise RegistrationError(
                    f"{self.full_id} already has an item registered for run {run_id}"
                )
            self._items[run_id] = item
            self._modes[run_id] = mode

    def _detach(self, run_id, item):
        with self._lock:
            if self._items.get(run_id) is not item:
                raise AssertionError(
                    f"Deregistering {item!r} ({self.full_id}) which is not the item "
                    f"registered for run {run_id}"
                )
            del self._items[run_id]
            del self._modes[run_id]


def register_accessor_free(
    run: "RunRegistry",
    owner: Owner,
    item_id: Optional[str],
    item: "StochasticItem",
) -> "StochasticItem":
    """
    Register an item of a singleton owner without a shared Accessor.

    A fresh AccessInfo is created for the item; `item_id=None` places it in
    the owner's ALL group.

    Returns
    -------
    StochasticItem
        The item, now registered.
    """
    run.register(item, AccessInfo(owner, item_id))
    return item
