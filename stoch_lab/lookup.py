"""
lookup.py - Multi-Dimensional Lookups Keyed by Enum Dimensions

This module provides:
- MultiDimLookup: An N-dimensional table indexed by tuples of enum members
- LookupByEnums: A registrable lookup holding one distribution per cell
  (e.g. probability-of-smoking by age band by sex)

Storage Layout:
--------------
Cells live in a flat list addressed by a row-major multi-radix index over
the per-dimension arities (`np.ravel_multi_index`). The first dimension is
the most significant, so iteration order is dimension-major and stable:

    dims = (Sex[2], AgeBand[3])
    flat = sex_index * 3 + age_index

Adding a trailing dimension (`expand`) replaces every existing cell with
a null-filled block for the new dimension.

Example Usage:
-------------
    >>> from enum import Enum
    >>> from stoch_lab.lookup import LookupByEnums
    >>> from stoch_lab.categorical import Bernoulli
    >>>
    >>> class Sex(Enum):
    ...     MALE = 1
    ...     FEMALE = 2
    >>>
    >>> smoker = LookupByEnums(Sex)
    >>> smoker.put_dist(Bernoulli(0.25), Sex.MALE)
    >>> smoker.put_dist(Bernoulli(0.18), Sex.FEMALE)
    >>> str(smoker.lookup)
    '[Bernoulli(0.25), Bernoulli(0.18)]'
"""

from __future__ import annotations

from enum import Enum, EnumMeta
from typing import Any, Dict, Generic, Iterator, List, Optional, Tuple, Type, TypeVar

import numpy as np
from loguru import logger

from .distributions import Distribution
from .types import (
    DistributionFamily,
    InvalidParameterError,
    RegistrationError,
    SampleMode,
    UnsupportedDistributionError,
)

V = TypeVar("V")


def _check_dim(dim: Any) -> Tuple[Enum, ...]:
    """Members of an enum dimension; rejects non-enums and empty enums."""
    if not isinstance(dim, EnumMeta):
        raise InvalidParameterError(f"Lookup dimension {dim!r} is not an Enum class")
    members = tuple(dim)
    if not members:
        raise InvalidParameterError(f"Lookup dimension {dim.__name__} has no values")
    return members


# =============================================================================
# MULTI-DIMENSIONAL LOOKUP
# =============================================================================

class MultiDimLookup(Generic[V]):
    """
    N-dimensional table of optional values indexed by enum members.

    Parameters
    ----------
    *dims : Type[Enum]
        Ordered dimensions. Each must be an Enum with at least one member.

    Raises
    ------
    InvalidParameterError
        If no dimensions are given or a dimension is not a non-empty Enum.
    """

    def __init__(self, *dims: Type[Enum]):
        if not dims:
            raise InvalidParameterError("A lookup needs at least one dimension")
        self._members = tuple(_check_dim(dim) for dim in dims)
        self._dims: Tuple[Type[Enum], ...] = tuple(dims)
        self._cells: List[Optional[V]] = [None] * int(np.prod(self.shape))

    @property
    def dims(self) -> Tuple[Type[Enum], ...]:
        return self._dims

    @property
    def shape(self) -> Tuple[int, ...]:
        """Arity of each dimension."""
        return tuple(len(members) for members in self._members)

    def _flat_index(self, idx: Tuple[Any, ...]) -> int:
        if len(idx) != len(self._dims):
            raise InvalidParameterError(
                f"Index {idx!r} has {len(idx)} entries; lookup has {len(self._dims)} dimensions"
            )
        coords = []
        for pos, (dim, value) in enumerate(zip(self._dims, idx)):
            if not isinstance(value, dim):
                raise InvalidParameterError(
                    f"Index entry {pos} is {value!r}; expected a {dim.__name__}"
                )
            coords.append(self._members[pos].index(value))
        return int(np.ravel_multi_index(tuple(coords), self.shape))

    def get(self, *idx: Enum) -> Optional[V]:
        """Value at the fully specified index (None if never filled)."""
        return self._cells[self._flat_index(idx)]

    def put(self, value: Optional[V], *idx: Enum) -> Optional[V]:
        """Store a value at the index, returning the previous one."""
        flat = self._flat_index(idx)
        previous = self._cells[flat]
        self._cells[flat] = value
        return previous

    def expand(self, new_dim: Type[Enum]) -> None:
        """
        Append a trailing dimension.

        Every existing cell becomes a block of None cells for the new
        dimension. Values held in the old cells are discarded (with a
        warning), so expansion is meant for lookups still being built.
        """
        new_members = _check_dim(new_dim)
        discarded = sum(1 for cell in self._cells if cell is not None)
        if discarded:
            logger.warning(
                f"Expanding lookup by {new_dim.__name__} discards {discarded} existing values"
            )
        self._members = self._members + (new_members,)
        self._dims = self._dims + (new_dim,)
        self._cells = [None] * (len(self._cells) * len(new_members))
        logger.debug(f"Expanded lookup to dimensions {self._dim_names()} shape {self.shape}")

    # -------------------------------------------------------------------------
    # Iteration
    # -------------------------------------------------------------------------

    def items(self) -> Iterator[Tuple[Tuple[Enum, ...], Optional[V]]]:
        """(index tuple, value) for every cell in dimension-major order."""
        for coords, cell in zip(np.ndindex(*self.shape), self._cells):
            yield tuple(self._members[d][c] for d, c in enumerate(coords)), cell

    def values(self) -> List[Optional[V]]:
        """All cell values (including None) in dimension-major order."""
        return list(self._cells)

    def non_null_values(self) -> List[V]:
        return [cell for cell in self._cells if cell is not None]

    def __iter__(self) -> Iterator[Optional[V]]:
        return iter(list(self._cells))

    def __len__(self) -> int:
        return len(self._cells)

    def _dim_names(self) -> str:
        return " x ".join(dim.__name__ for dim in self._dims)

    def __str__(self) -> str:
        return "[" + ", ".join("null" if c is None else str(c) for c in self._cells) + "]"

    def __repr__(self) -> str:
        return f"MultiDimLookup({self._dim_names()})"


# =============================================================================
# LOOKUP OF DISTRIBUTIONS
# =============================================================================

class LookupByEnums(Distribution):
    """
    A registrable lookup holding one distribution per cell.

    Registering the lookup binds every distribution already in it to the
    lookup's identity and sampler; distributions put in while it is
    registered are bound on insertion. All cells therefore share the
    lookup's qualified id and override.

    Parameters
    ----------
    *dims : Type[Enum]
        Lookup dimensions (see MultiDimLookup).
    """

    family = DistributionFamily.LOOKUP_BY_ENUMS

    def __init__(self, *dims: Type[Enum]):
        super().__init__()
        self._lookup: MultiDimLookup[Distribution] = MultiDimLookup(*dims)

    @property
    def lookup(self) -> MultiDimLookup[Distribution]:
        return self._lookup

    @property
    def dims(self) -> Tuple[Type[Enum], ...]:
        return self._lookup.dims

    def add_dimension(self, new_dim: Type[Enum]) -> None:
        """Append a trailing dimension (clears existing cells)."""
        self._lookup.expand(new_dim)

    def put_dist(self, dist: Distribution, *idx: Enum) -> Optional[Distribution]:
        """
        Store a distribution at the index and return the one it replaces.

        While the lookup is registered the new distribution is bound to the
        lookup's registration and the replaced one (if no other cell holds
        it) is unbound.

        Raises
        ------
        InvalidParameterError
            If `dist` is not a Distribution or the index is malformed.
        RegistrationError
            If `dist` is registered other than as part of this lookup.
        UnsupportedDistributionError
            If the lookup samples normally and its sampler cannot serve
            `dist`.
        """
        if not isinstance(dist, Distribution):
            raise InvalidParameterError(f"{dist!r} is not a Distribution")
        bound = self._access_info is not None
        if bound and dist.is_registered and not self._owns(dist):
            raise RegistrationError(
                f"{dist!r} already registered as {dist.qualified_id} for run "
                f"{dist.run_id}; can't add it to lookup {self.qualified_id}"
            )
        if bound and self.sample_mode is SampleMode.NORMAL:
            missing = [f for f in dist.required_families() if not self._sampler.supports(f)]
            if missing:
                raise UnsupportedDistributionError(
                    f"Sampler {self._sampler!r} can't serve {sorted(f.name for f in missing)} "
                    f"needed by lookup {self.qualified_id}"
                )

        previous = self._lookup.put(dist, *idx)
        if bound:
            dist._bind(self._access_info, self._sampler, self._run_id)
            if previous is not None and not self._holds(previous):
                previous._unbind()
                logger.debug(f"Unbound {previous!r} replaced in lookup {self.qualified_id}")
        return previous

    def _holds(self, dist: Distribution) -> bool:
        """True if some cell holds this exact distribution."""
        return any(d is dist for d in self.all_dists())

    def _owns(self, dist: Distribution) -> bool:
        """True if `dist` is bound through this lookup's registration."""
        return dist._access_info is self._access_info and dist._run_id == self._run_id

    def get_dist(self, *idx: Enum) -> Optional[Distribution]:
        return self._lookup.get(*idx)

    def all_dists(self) -> List[Distribution]:
        """Every non-null cell distribution, in dimension-major order."""
        return self._lookup.non_null_values()

    def sample(self, *idx: Enum):
        """
        Sample the distribution at the given index.

        Raises
        ------
        UnregisteredItemError
            If the lookup is not registered.
        InvalidParameterError
            If the index is malformed or the cell is empty.
        """
        self._require_binding()
        dist = self._lookup.get(*idx)
        if dist is None:
            raise InvalidParameterError(
                f"No distribution at {idx!r} in lookup {self.qualified_id}"
            )
        return dist.sample()

    # -------------------------------------------------------------------------
    # Binding cascade
    # -------------------------------------------------------------------------

    def _bind(self, access_info, sampler, run_id):
        super()._bind(access_info, sampler, run_id)
        for dist in self.all_dists():
            dist._bind(access_info, sampler, run_id)

    def _unbind(self):
        super()._unbind()
        for dist in self.all_dists():
            dist._unbind()

    def required_families(self):
        families = {self.family}
        for dist in self.all_dists():
            families |= dist.required_families()
        return families

    def registered_parts(self):
        return [dist for dist in self.all_dists() if dist.is_registered and not self._owns(dist)]

    # -------------------------------------------------------------------------
    # Parameters & copies
    # -------------------------------------------------------------------------

    def params(self) -> Dict[str, Any]:
        cells = []
        for idx, dist in self._lookup.items():
            if dist is not None:
                cells.append({
                    "index": [member.name for member in idx],
                    "family": dist.family.name,
                    "description": repr(dist),
                    "params": dist.params(),
                })
        return {"dims": [dim.__name__ for dim in self.dims], "cells": cells}

    def create_unregistered_copy(self) -> "LookupByEnums":
        """Copy with unregistered copies of every cell distribution."""
        copy = LookupByEnums(*self.dims)
        for idx, dist in self._lookup.items():
            if dist is not None:
                copy.put_dist(dist.create_unregistered_copy(), *idx)
        return copy

    def __str__(self) -> str:
        return str(self._lookup)

    def __repr__(self) -> str:
        return f"LookupByEnums({self._lookup._dim_names()})"
