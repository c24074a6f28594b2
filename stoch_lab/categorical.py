"""
categorical.py - Categorical Distributions, Outcome Ranges and Edit Locking

A categorical distribution has K discrete outcomes, labelled 1..K ("raw
ordinals"). Outcomes can be returned three ways:

1. As a member of a bound enum (`sample_category()`), ordinal i mapping to
   the i-th declared member
2. As the raw ordinal 1..K (`sample_int()` with no ranges)
3. As an integer from an ordered list of ranges whose sizes sum to K
   (`sample_int()` with ranges), e.g. K=5 over [10,11] + [20,22] maps
   ordinals 1..5 to 10, 11, 20, 21, 22

Edit Locking:
------------
Batch edits (adding ranges, changing single probabilities) pass through
states that are not consistent. These edits move the distribution to
LockState.LOCKED; a locked distribution refuses to sample. `unlock()`
re-checks consistency (ranges cover K outcomes or none, PMF sums to 1) and
only then returns to UNLOCKED:

    UNLOCKED --(edit)--> LOCKED --(unlock + consistency check)--> UNLOCKED

Edits that are validated as a whole (Bernoulli.p, CustomCategorical.set_pmf,
UniformDiscrete.set_range) never leave an inconsistent state and do not
change the lock state.

Example Usage:
-------------
    >>> from stoch_lab.categorical import CustomCategorical
    >>>
    >>> dist = CustomCategorical([0.1, 0.2, 0.3, 0.2, 0.2])
    >>> with dist.editing():
    ...     dist.add_range(10, 11)
    ...     dist.add_range(20, 22)
    >>> dist.ranges
    (Range(min=10, max=11), Range(min=20, max=22))
"""

from __future__ import annotations

from abc import abstractmethod
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Type, Union

import numpy as np
from loguru import logger

from .distributions import DiscreteDistribution, _positive_int, _probability
from .types import (
    CUMULATIVE_PROB_TOLERANCE,
    Binary,
    DistributionFamily,
    DistributionLockedError,
    InvalidParameterError,
    LockState,
    ProtocolViolationError,
    Range,
    SampleMode,
)


CategoryOrOrdinal = Union[Enum, int]


# =============================================================================
# CATEGORICAL BASE
# =============================================================================

class CategoricalDistribution(DiscreteDistribution):
    """
    Base for distributions over K outcomes, optionally bound to an enum.

    Parameters
    ----------
    category : Type[Enum], optional
        Enum whose members (in declaration order) are the K outcomes.
    k : int, optional
        Number of outcomes when no enum is bound.
    locked : bool, default=False
        Start in the LOCKED state (for constructors that edit ranges).

    Raises
    ------
    InvalidParameterError
        If neither (or an inconsistent combination of) `category` and `k` is
        given, or the enum has no members.
    """

    def __init__(
        self,
        category: Optional[Type[Enum]] = None,
        k: Optional[int] = None,
        locked: bool = False,
    ):
        super().__init__()
        if category is not None:
            members = tuple(category)
            if not members:
                raise InvalidParameterError(
                    f"Category enum {category.__name__} has no members"
                )
            if k is not None and k != len(members):
                raise InvalidParameterError(
                    f"K={k} does not match the {len(members)} members of {category.__name__}"
                )
            self._members: Tuple[Enum, ...] = members
            self._k = len(members)
        else:
            if k is None:
                raise InvalidParameterError("Need a category enum or a number of outcomes K")
            self._members = ()
            self._k = _positive_int("k", k)
        self._category = category
        self._ranges: List[Range] = []
        self._ranges_entries = 0
        self._lock_state = LockState.LOCKED if locked else LockState.UNLOCKED

    # -------------------------------------------------------------------------
    # Structure
    # -------------------------------------------------------------------------

    @property
    def k(self) -> int:
        """Number of discrete outcomes (labellable 1..K)."""
        return self._k

    @property
    def category(self) -> Optional[Type[Enum]]:
        """The bound category enum, if any."""
        return self._category

    @property
    def returns_category(self) -> bool:
        return self._category is not None

    @property
    def ranges(self) -> Tuple[Range, ...]:
        return tuple(self._ranges)

    @property
    def ranges_entries(self) -> int:
        """Total number of integers covered by the ranges added so far."""
        return self._ranges_entries

    @property
    def uses_mapped_ranges(self) -> bool:
        return self._ranges_entries > 0

    def get_sub_range(self, index: int) -> Optional[Range]:
        """The index-th range (0-based), or None if out of bounds."""
        if 0 <= index < len(self._ranges):
            return self._ranges[index]
        return None

    def ordinal_of(self, outcome: CategoryOrOrdinal) -> int:
        """
        Raw 1-based ordinal of an outcome given as an enum member or int.

        Raises
        ------
        InvalidParameterError
            If the outcome is not a member of the bound enum or not in 1..K.
        """
        if isinstance(outcome, Enum):
            if outcome not in self._members:
                raise InvalidParameterError(
                    f"{outcome!r} is not a category of {self!r}"
                )
            return self._members.index(outcome) + 1
        ordinal = int(outcome)
        if ordinal != outcome or not 1 <= ordinal <= self._k:
            raise InvalidParameterError(f"Outcome ordinal {outcome} is not in 1..{self._k}")
        return ordinal

    # -------------------------------------------------------------------------
    # Ranges
    # -------------------------------------------------------------------------

    def add_range(self, min: int, max: int) -> int:
        """
        Append a range that outcomes map onto; locks the distribution.

        The distribution is integer-sampleable again once unlocked with
        ranges covering exactly K values (or no ranges, giving raw 1..K).

        Returns
        -------
        int
            Total entries across all ranges so far.

        Raises
        ------
        InvalidParameterError
            If max < min or the total would exceed K.
        """
        new_range = Range(int(min), int(max))
        total = self._ranges_entries + new_range.num_entries
        if total > self._k:
            raise InvalidParameterError(
                f"Range {new_range.min}..{new_range.max} takes alternatives to {total}, "
                f"exceeding K={self._k}"
            )
        self._lock_state = LockState.LOCKED
        self._ranges.append(new_range)
        self._ranges_entries = total
        return total

    def clear_ranges(self, revised_k: Optional[int] = None) -> None:
        """
        Remove all ranges, optionally changing K; locks the distribution.

        Raises
        ------
        InvalidParameterError
            If `revised_k` is not positive, or differs from K while an enum
            category is bound.
        """
        if revised_k is not None:
            revised_k = _positive_int("revised_k", revised_k)
            if revised_k != self._k and self.returns_category:
                raise InvalidParameterError("Can't change K when returning a category")
        self._lock_state = LockState.LOCKED
        self._ranges.clear()
        self._ranges_entries = 0
        if revised_k is not None:
            self._k = revised_k

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    @property
    def lock_state(self) -> LockState:
        return self._lock_state

    @property
    def is_locked(self) -> bool:
        return self._lock_state is LockState.LOCKED

    def lock(self) -> None:
        """Explicitly enter the LOCKED (mid-edit) state."""
        self._lock_state = LockState.LOCKED

    def unlock(self) -> None:
        """
        Check consistency and return to the sampleable UNLOCKED state.

        Raises
        ------
        InvalidParameterError
            If the distribution is inconsistent; it then stays LOCKED.
        """
        self._check_consistency()
        self._lock_state = LockState.UNLOCKED

    @contextmanager
    def editing(self) -> Iterator["CategoricalDistribution"]:
        """
        Lock for a batch of edits and unlock (with checks) on normal exit.

        If the block raises, the distribution is left LOCKED.
        """
        self.lock()
        yield self
        self.unlock()

    def _check_consistency(self) -> None:
        if self._ranges_entries not in (0, self._k):
            raise InvalidParameterError(
                f"Ranges cover {self._ranges_entries} outcomes but K is {self._k}"
            )

    def _check_sampleable(self) -> None:
        if self.is_locked:
            raise DistributionLockedError(
                f"Distribution {self!r} is locked for editing; unlock() before sampling"
            )

    # -------------------------------------------------------------------------
    # Sampling
    # -------------------------------------------------------------------------

    @abstractmethod
    def _sample_ordinal_by_mode(self, mode: SampleMode) -> int:
        """Raw 1..K ordinal according to the family's own rule."""

    def _sample_int_by_mode(self, mode: SampleMode) -> int:
        self._check_sampleable()
        if self._ranges_entries == 0:
            return self._sample_ordinal_by_mode(mode)
        if self._ranges_entries != self._k:
            raise ProtocolViolationError(
                f"Need to set up ranges with K ({self._k}) entries before sampling an integer"
            )
        remaining = self._sample_ordinal_by_mode(mode)
        logger.trace(f"{self.qualified_id} (Mode {mode.name}): mapping raw ordinal {remaining} "
                     f"to ranges (K={self._k})")
        for r in self._ranges:
            if remaining <= r.num_entries:
                return r.min + remaining - 1
            remaining -= r.num_entries
        raise AssertionError(f"Ordinal overflowed the ranges of {self!r}")

    def sample_category(self) -> Enum:
        """
        Sample an outcome as a member of the bound enum.

        Raises
        ------
        ProtocolViolationError
            If no category enum is bound.
        DistributionLockedError
            If the distribution is locked.
        """
        mode = self.sample_mode
        if not self.returns_category:
            raise ProtocolViolationError(f"{self!r} is not defined to return a category")
        self._check_sampleable()
        value = self._members[self._sample_ordinal_by_mode(mode) - 1]
        logger.trace(f"{self.qualified_id} (Mode {mode.name}): sampled {value} from {self!r}")
        return value

    def sample(self):
        """Category when an enum is bound, integer otherwise."""
        if self.returns_category:
            return self.sample_category()
        return self.sample_int()

    # -------------------------------------------------------------------------
    # Parameters & copies
    # -------------------------------------------------------------------------

    def params(self) -> Dict[str, Any]:
        view = super().params()
        view["k"] = self._k
        view["category"] = self._category.__name__ if self._category is not None else None
        view["ranges"] = [(r.min, r.max) for r in self._ranges]
        return view

    def _copy_structure_to(self, copy: "CategoricalDistribution") -> "CategoricalDistribution":
        """Replicate ranges and lock state onto a freshly built copy."""
        copy.clear_ranges(self._k if not copy.returns_category else None)
        for r in self._ranges:
            copy.add_range(r.min, r.max)
        if self.is_locked:
            copy.lock()
        else:
            copy.unlock()
        return copy


# =============================================================================
# BERNOULLI
# =============================================================================

class Bernoulli(CategoricalDistribution):
    """
    A single trial with success probability p.

    Outcomes are `Binary.FAILURE` (raw ordinal 1) and `Binary.SUCCESS`
    (raw ordinal 2). Collapses to SUCCESS when p >= 0.5, FAILURE otherwise.

    Examples
    --------
    >>> trial = Bernoulli(0.3)
    >>> # after registration:
    >>> trial.sample()
    <Binary.FAILURE: 1>
    """

    family = DistributionFamily.BERNOULLI
    _PARAM_NAMES = ("p",)

    def __init__(self, p: float):
        super().__init__(category=Binary)
        self._init_params(p=p)

    @property
    def p(self) -> float:
        """Success probability, in [0,1]."""
        return self._p

    @p.setter
    def p(self, value: float) -> None:
        self.set_params(p=value)

    @classmethod
    def _validate(cls, params):
        return {"p": _probability("p", params["p"])}

    def _sample_ordinal_by_mode(self, mode):
        if mode is SampleMode.COLLAPSE_MID:
            return 2 if self._p >= 0.5 else 1
        return self.sampler.sample_bernoulli(self._p)

    def sample_success(self) -> bool:
        """True when the sampled outcome is SUCCESS."""
        return self.sample_category() is Binary.SUCCESS

    def create_unregistered_copy(self):
        return self._copy_structure_to(Bernoulli(self._p))

    def __repr__(self):
        return f"Bernoulli({self._p})"


# =============================================================================
# CUSTOM CATEGORICAL
# =============================================================================

class CustomCategorical(CategoricalDistribution):
    """
    Categorical distribution with an explicit probability mass function.

    Parameters
    ----------
    pmf : Sequence[float]
        Probability per outcome, in raw-ordinal order. Entries must be in
        [0,1] and sum to 1 within CUMULATIVE_PROB_TOLERANCE.
    category : Type[Enum], optional
        Enum naming the outcomes; must have len(pmf) members.

    Notes
    -----
    Sampling scans the cumulative PMF for the first entry >= a U[0,1) draw
    (0.5 when collapsed). If floating-point rounding leaves the total just
    below the draw, the last outcome is returned and a warning logged.
    """

    family = DistributionFamily.CUSTOM_CATEGORICAL
    _PARAM_NAMES = ("pmf",)

    def __init__(self, pmf: Sequence[float], category: Optional[Type[Enum]] = None):
        pmf_length = len(pmf)
        if category is None:
            super().__init__(k=pmf_length)
        else:
            super().__init__(category=category)
        self._init_params(pmf=pmf)

    @property
    def pmf(self) -> np.ndarray:
        """Copy of the probability mass function."""
        return self._pmf.copy()

    def _validate(self, params):
        pmf = np.array(params["pmf"], dtype=float)
        self._check_pmf(pmf)
        return {"pmf": pmf}

    def _check_pmf(self, pmf: np.ndarray) -> None:
        if pmf.ndim != 1 or pmf.size != self._k:
            raise InvalidParameterError(
                f"PMF needs to provide probabilities for the K ({self._k}) alternatives"
            )
        if not np.all(np.isfinite(pmf)) or np.any(pmf < 0.0) or np.any(pmf > 1.0):
            raise InvalidParameterError(f"PMF {pmf.tolist()} has entries outside [0,1]")
        total = float(pmf.sum())
        if abs(total - 1.0) > CUMULATIVE_PROB_TOLERANCE:
            raise InvalidParameterError(
                f"Sum of PMF probabilities {total} is outside tolerance "
                f"{CUMULATIVE_PROB_TOLERANCE} from 1"
            )

    def set_pmf(self, pmf: Sequence[float]) -> None:
        """Replace the whole PMF (validated before any change)."""
        self.set_params(pmf=pmf)

    def set_probability(self, outcome: CategoryOrOrdinal, prob: float) -> None:
        """
        Change one outcome's probability; locks the distribution.

        The sum is re-checked by `unlock()`, so several probabilities can be
        moved before the distribution is consistent again.
        """
        prob = _probability("prob", prob)
        index = self.ordinal_of(outcome) - 1
        self._lock_state = LockState.LOCKED
        self._pmf[index] = prob

    def _check_consistency(self) -> None:
        super()._check_consistency()
        self._check_pmf(self._pmf)

    def params(self) -> Dict[str, Any]:
        view = super().params()
        view["pmf"] = self._pmf.tolist()
        return view

    def _sample_ordinal_by_mode(self, mode):
        if mode is SampleMode.COLLAPSE_MID:
            draw = 0.5
        else:
            draw = self.sampler.sample_uniform(0.0, 1.0)
        logger.trace(f"{self.qualified_id} (Mode {mode.name}): sampling for cumulative prob "
                     f"{draw} from {self!r}")
        cumulative = np.cumsum(self._pmf)
        index = int(np.searchsorted(cumulative, draw, side="left"))
        if index >= self._k:
            logger.warning(
                f"Overflowed lookup table matching random sample {draw}: "
                f"assuming rounding issues. Defaulting to last alternative"
            )
            return self._k
        return index + 1

    def create_unregistered_copy(self):
        # A PMF mid-edit may not validate, so build from a uniform one first
        copy = CustomCategorical(np.full(self._k, 1.0 / self._k), self._category)
        copy._pmf = self._pmf.copy()
        return self._copy_structure_to(copy)

    def __repr__(self):
        return "CustomPMF[" + ",".join(str(p) for p in self._pmf.tolist()) + "]"


# =============================================================================
# DISCRETE UNIFORM
# =============================================================================

class UniformDiscrete(CategoricalDistribution):
    """
    Discrete uniform distribution over an integer range or enum categories.

    Parameters
    ----------
    low, high : int, optional
        Inclusive integer bounds (integer-valued variant).
    category : Type[Enum], optional
        Enum whose members are equally likely (category variant).

    Collapses to the middle outcome, raw ordinal (1 + K) // 2 (the lower of
    the two middle outcomes when K is even).

    Examples
    --------
    >>> die = UniformDiscrete(1, 6)
    >>> die.bounds
    (1, 6)
    >>> colour = UniformDiscrete(category=Colour)
    """

    family = DistributionFamily.UNIFORM_DISCRETE
    _PARAM_NAMES = ()

    def __init__(
        self,
        low: Optional[int] = None,
        high: Optional[int] = None,
        *,
        category: Optional[Type[Enum]] = None,
    ):
        if category is not None:
            if low is not None or high is not None:
                raise InvalidParameterError(
                    "Give either a category enum or integer bounds, not both"
                )
            super().__init__(category=category)
        else:
            if low is None or high is None:
                raise InvalidParameterError("Integer discrete uniform needs low and high")
            super().__init__(k=self._range_size(low, high))
            self.set_range(low, high)

    @staticmethod
    def _range_size(low: int, high: int) -> int:
        return Range(int(low), int(high)).num_entries

    def set_range(self, low: int, high: int) -> None:
        """
        Change the integer range (and hence K) in one validated step.

        Raises
        ------
        InvalidParameterError
            If high < low, or the size differs from K while an enum category
            is bound.
        """
        size = self._range_size(low, high)
        was_locked = self.is_locked
        self.clear_ranges(size)
        if int(low) != 1:
            # With low == 1 the raw 1..K ordinal is already the outcome
            self.add_range(low, high)
        if not was_locked:
            self.unlock()

    @property
    def bounds(self) -> Optional[Tuple[int, int]]:
        """(low, high) of the integer outcomes; None for an unmapped category."""
        if self._ranges:
            return (self._ranges[0].min, self._ranges[-1].max)
        if self.returns_category:
            return None
        return (1, self._k)

    def _sample_ordinal_by_mode(self, mode):
        if mode is SampleMode.COLLAPSE_MID:
            return (1 + self._k) // 2
        return self.sampler.sample_uniform_discrete(self._k)

    def create_unregistered_copy(self):
        if self.returns_category:
            return self._copy_structure_to(UniformDiscrete(category=self._category))
        low, high = self.bounds
        return self._copy_structure_to(UniformDiscrete(low, high))

    def __repr__(self):
        if self.returns_category:
            return f"DiscreteUniform({self._category.__name__})"
        low, high = self.bounds
        return f"DiscreteUniform({low},{high})"
