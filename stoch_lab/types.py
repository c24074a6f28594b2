"""
types.py - Core Enumerations, Value Objects and Errors for Stoch Lab

This module defines the small vocabulary shared by every other module:
- SampleMode: NORMAL (real draw) or COLLAPSE_MID (deterministic representative)
- Binary: the FAILURE/SUCCESS category of a Bernoulli trial
- DistributionFamily: discriminator for the closed set of distribution families
- LockState: edit state of a categorical distribution
- Range: a contiguous integer range that categorical outcomes map onto
- The error taxonomy (invalid parameters vs. protocol violations)

Design Principles:
-----------------
1. Immutability where practical (frozen dataclasses for value objects)
2. Validation at construction time (fail-fast)
3. Errors subclass the matching builtin (ValueError, RuntimeError) so that
   callers catching builtins keep working
4. Numpy-style docstrings throughout

Example Usage:
-------------
    >>> from stoch_lab.types import Range, SampleMode
    >>> r = Range(10, 12)
    >>> r.num_entries
    3
    >>> SampleMode.from_token("COLLAPSE_MID")
    <SampleMode.COLLAPSE_MID: 'COLLAPSE_MID'>
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto


# =============================================================================
# TYPE ALIASES & CONSTANTS
# =============================================================================

# Runs are identified by an explicit string id, never by ambient thread state.
RunId = str

# Allowed |sum(pmf) - 1| for categorical probability mass functions.
CUMULATIVE_PROB_TOLERANCE = 0.001

# Group id used when an item is registered without its own id.
ALL_GROUP_ID = "ALL"


# =============================================================================
# ERRORS
# =============================================================================

class StochLabError(Exception):
    """Base class for all stoch_lab errors."""


class InvalidParameterError(StochLabError, ValueError):
    """
    A parameter (or configuration value) is outside its allowed domain.

    Raised synchronously by constructors and mutators so that an invalid
    state is never observable.
    """


class ProtocolViolationError(StochLabError, RuntimeError):
    """A lifecycle rule (registration, locking) was broken by the caller."""


class UnregisteredItemError(ProtocolViolationError):
    """The stochastic item has not been registered for a run."""


class DistributionLockedError(ProtocolViolationError):
    """A locked (mid-edit) categorical distribution was sampled."""


class RegistrationError(ProtocolViolationError):
    """Double registration, registration after finalisation, or missing run."""


class UnsupportedDistributionError(StochLabError, NotImplementedError):
    """A sampler engine was asked for a family it does not serve."""


# =============================================================================
# ENUMERATIONS
# =============================================================================

class SampleMode(Enum):
    """
    How a registered stochastic item produces values.

    NORMAL: Delegate to the run's sampler for a real random draw.
    COLLAPSE_MID: Return a deterministic representative value (typically the
                  mean) without touching the sampler.
    """
    NORMAL = "NORMAL"
    COLLAPSE_MID = "COLLAPSE_MID"

    @classmethod
    def from_token(cls, token: str) -> "SampleMode":
        """
        Parse an override-file token.

        Raises
        ------
        InvalidParameterError
            If the token is not exactly one of the member names.
        """
        try:
            return cls[token]
        except KeyError:
            valid = ", ".join(m.name for m in cls)
            raise InvalidParameterError(
                f"Unknown sample mode '{token}'. Valid modes: {valid}"
            ) from None


class Binary(Enum):
    """
    Outcome of a Bernoulli trial.

    Declaration order matters: FAILURE is raw ordinal 1 and SUCCESS is raw
    ordinal 2 in the 1-based categorical scheme.
    """
    FAILURE = auto()
    SUCCESS = auto()


class DistributionFamily(Enum):
    """Discriminator for the closed set of supported distribution families."""
    NORMAL = auto()
    UNIFORM = auto()
    EXPONENTIAL = auto()
    BERNOULLI = auto()
    POISSON = auto()
    GEOMETRIC = auto()
    NEGATIVE_BINOMIAL = auto()
    TRIANGULAR = auto()
    WEIBULL = auto()
    FIXED_CONTINUOUS = auto()
    CUSTOM_CATEGORICAL = auto()
    UNIFORM_DISCRETE = auto()
    LOOKUP_BY_ENUMS = auto()


class LockState(Enum):
    """
    Edit state of a categorical distribution.

    UNLOCKED is both the initial state and the only sampleable one. Edits
    that can leave the distribution inconsistent move it to LOCKED; an
    explicit unlock re-checks consistency.
    """
    UNLOCKED = auto()
    LOCKED = auto()


# =============================================================================
# VALUE OBJECTS
# =============================================================================

@dataclass(frozen=True)
class Range:
    """
    A contiguous, inclusive integer range.

    Parameters
    ----------
    min : int
        Lowest value in the range.
    max : int
        Highest value in the range. Must be >= min.

    Examples
    --------
    >>> Range(20, 22).num_entries
    3
    """
    min: int
    max: int

    def __post_init__(self):
        if self.max < self.min:
            raise InvalidParameterError(
                f"Range max {self.max} is less than min {self.min}"
            )

    @property
    def num_entries(self) -> int:
        """Number of integers covered by the range."""
        return self.max - self.min + 1

    def __iter__(self):
        return iter(range(self.min, self.max + 1))
