"""
distributions.py - Stochastic Items and the Non-Categorical Distribution Families

This module provides:
- StochasticItem: Common registration contract (access info, sampler, run)
- Distribution: Parameterised item with sample(), copies and a parameter view
- ContinuousDistribution / DiscreteDistribution: float vs. int outcomes
- Normal, Uniform, Exponential, FixedContinuous, Triangular, Weibull
- Poisson, Geometric, NegativeBinomial

Categorical families (Bernoulli, CustomCategorical, UniformDiscrete) live in
`categorical.py`; lookups of distributions live in `lookup.py`.

Lifecycle:
---------
A distribution is created unregistered. It can be validated, edited and
copied, but `sample()` raises UnregisteredItemError until it has been
registered for a run (via an Accessor or `register_accessor_free`). At that
point it is bound to an AccessInfo (identity + resolved SampleMode), the
run's Sampler and the run id. The run registry deregisters it at run end.

Sampling:
--------
`sample()` dispatches on the resolved SampleMode:
- NORMAL: delegate to the bound sampler with the canonical parameters
- COLLAPSE_MID: return a deterministic representative value, never
  touching the sampler

Example Usage:
-------------
    >>> from stoch_lab import Normal, RunRegistry, register_accessor_free
    >>>
    >>> service_time = Normal(mean=5.0, sd=1.5)
    >>> with RunRegistry("run-1", seed=42) as run:
    ...     register_accessor_free(run, "Clinic", "serviceTime", service_time)
    ...     value = service_time.sample()
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar, Dict, List, Optional, Set, Tuple

from loguru import logger
from scipy.special import gamma

from .types import (
    DistributionFamily,
    InvalidParameterError,
    RunId,
    SampleMode,
    UnregisteredItemError,
)

if TYPE_CHECKING:
    from .access import AccessInfo
    from .samplers import Sampler


# =============================================================================
# VALIDATION HELPERS
# =============================================================================

def _finite(name: str, value: Any) -> float:
    """Coerce to float and reject NaN/inf."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise InvalidParameterError(f"Parameter {name}={value!r} is not a number") from None
    if not math.isfinite(value):
        raise InvalidParameterError(f"Parameter {name}={value} is not finite")
    return value


def _positive(name: str, value: Any) -> float:
    value = _finite(name, value)
    if value <= 0.0:
        raise InvalidParameterError(f"Parameter {name}={value} must be > 0")
    return value


def _probability(name: str, value: Any, low_open: bool = False, high_open: bool = False) -> float:
    """Check value is in [0, 1], optionally excluding either end."""
    value = _finite(name, value)
    too_low = value <= 0.0 if low_open else value < 0.0
    too_high = value >= 1.0 if high_open else value > 1.0
    if too_low or too_high:
        interval = ("(" if low_open else "[") + "0,1" + (")" if high_open else "]")
        raise InvalidParameterError(f"Parameter {name}={value} is not in {interval}")
    return value


def _positive_int(name: str, value: Any) -> int:
    number = _finite(name, value)
    if number != int(number):
        raise InvalidParameterError(f"Parameter {name}={value} is not an integer")
    if number <= 0:
        raise InvalidParameterError(f"Parameter {name}={value} must be > 0")
    return int(number)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def _parameter(name: str, doc: str) -> property:
    """Property whose setter goes through the validated `set_params` path."""
    attr = "_" + name

    def getter(self):
        return getattr(self, attr)

    def setter(self, value):
        self.set_params(**{name: value})

    return property(getter, setter, doc=doc)


# =============================================================================
# STOCHASTIC ITEM
# =============================================================================

class StochasticItem(ABC):
    """
    Anything that must be registered per run before it can be sampled.

    The binding (access info, sampler, run id) is set by the run registry
    and is deliberately not part of the public constructor.

    Attributes
    ----------
    family : DistributionFamily
        Class-level discriminator of the concrete family.
    """

    family: ClassVar[DistributionFamily]

    def __init__(self):
        self._access_info: Optional[AccessInfo] = None
        self._sampler: Optional[Sampler] = None
        self._run_id: Optional[RunId] = None

    # -------------------------------------------------------------------------
    # Binding (called by the run registry)
    # -------------------------------------------------------------------------

    def _bind(self, access_info: "AccessInfo", sampler: "Sampler", run_id: RunId) -> None:
        self._access_info = access_info
        self._sampler = sampler
        self._run_id = run_id

    def _unbind(self) -> None:
        self._access_info = None
        self._sampler = None
        self._run_id = None

    # -------------------------------------------------------------------------
    # Registration state
    # -------------------------------------------------------------------------

    @property
    def is_registered(self) -> bool:
        """True while bound to a live run registration."""
        if self._access_info is None or self._sampler is None:
            return False
        return self._access_info.is_live_for_run(self._run_id)

    def _require_binding(self) -> None:
        if self._access_info is None or self._sampler is None:
            raise UnregisteredItemError(
                f"Stochastic item {self!r} not registered (via an accessor) for a run"
            )

    @property
    def access_info(self) -> "AccessInfo":
        """The bound identity. Raises UnregisteredItemError if unbound."""
        self._require_binding()
        return self._access_info

    @property
    def sampler(self) -> "Sampler":
        """The run's sampler. Raises UnregisteredItemError if unbound."""
        self._require_binding()
        return self._sampler

    @property
    def run_id(self) -> Optional[RunId]:
        """Id of the run this item is bound to (None if unregistered)."""
        return self._run_id

    @property
    def qualified_id(self) -> str:
        """`Owner.id` of the bound identity."""
        return self.access_info.full_id

    @property
    def sample_mode(self) -> SampleMode:
        """Resolved sample mode for the bound run."""
        return self.access_info.mode_for_run(self._run_id)

    def required_families(self) -> Set[DistributionFamily]:
        """Families a sampler must serve for this item to sample normally."""
        return {self.family}

    def registered_parts(self) -> List["StochasticItem"]:
        """Contained items already bound to a live registration."""
        return []

    # -------------------------------------------------------------------------
    # Parameter view
    # -------------------------------------------------------------------------

    @abstractmethod
    def params(self) -> Dict[str, Any]:
        """Explicit, enumerable view of the item's parameters."""

    @abstractmethod
    def __repr__(self) -> str:
        ...


# =============================================================================
# DISTRIBUTION BASE
# =============================================================================

class Distribution(StochasticItem):
    """
    A parameterised stochastic quantity.

    Subclasses declare `_PARAM_NAMES` and a `_validate` classmethod that
    coerces and checks a complete candidate parameter set. Every mutation
    goes through `set_params`, so an invalid combination is rejected before
    any field changes.
    """

    _PARAM_NAMES: ClassVar[Tuple[str, ...]] = ()

    @classmethod
    def _validate(cls, params: Dict[str, Any]) -> Dict[str, Any]:
        """Return the coerced parameters or raise InvalidParameterError."""
        return dict(params)

    def _init_params(self, **params) -> None:
        for name, value in self._validate(params).items():
            setattr(self, "_" + name, value)

    def params(self) -> Dict[str, Any]:
        return {name: getattr(self, "_" + name) for name in self._PARAM_NAMES}

    def set_params(self, **changes) -> None:
        """
        Atomically change one or more parameters.

        Parameters
        ----------
        **changes
            New values keyed by parameter name.

        Raises
        ------
        InvalidParameterError
            If a name is unknown or the resulting combination is invalid.
            The distribution is left unchanged in that case.

        Examples
        --------
        >>> u = Uniform(0.0, 1.0)
        >>> u.set_params(low=5.0, high=6.0)   # low alone would exceed high
        """
        unknown = set(changes) - set(self._PARAM_NAMES)
        if unknown:
            raise InvalidParameterError(
                f"{type(self).__name__} has no parameters {sorted(unknown)}. "
                f"Parameters: {list(self._PARAM_NAMES)}"
            )
        candidate = {**self.params(), **changes}
        validated = self._validate(candidate)
        for name in changes:
            setattr(self, "_" + name, validated[name])
        self._params_changed()

    def _params_changed(self) -> None:
        """Hook for subclasses caching derived values."""

    @abstractmethod
    def sample(self):
        """Sample according to the resolved sample mode."""

    def create_unregistered_copy(self) -> "Distribution":
        """
        Copy parameters only. The copy must be registered separately and
        will be governed by the overrides for whatever identity it gets.
        """
        return type(self)(**self.params())

    def create_registered_copy(self) -> "Distribution":
        """
        Copy that shares this distribution's binding (identity, sampler and
        run), so it behaves under the same override without a separate
        registered identity. Only the original is tracked for cleanup.
        """
        copy = self.create_unregistered_copy()
        copy._bind(self.access_info, self.sampler, self._run_id)
        return copy


# =============================================================================
# CONTINUOUS / DISCRETE
# =============================================================================

class ContinuousDistribution(Distribution):
    """Distribution producing float outcomes."""

    def sample(self) -> float:
        mode = self.sample_mode
        value = self._sample_by_mode(mode)
        logger.trace(f"{self.qualified_id} (Mode {mode.name}): sampled {value} from {self!r}")
        return value

    @abstractmethod
    def _sample_by_mode(self, mode: SampleMode) -> float:
        ...


class DiscreteDistribution(Distribution):
    """
    Distribution producing integer outcomes.

    Can also be sampled "as continuous" through `sample_float()`.
    """

    def sample_int(self) -> int:
        mode = self.sample_mode
        value = self._sample_int_by_mode(mode)
        logger.trace(f"{self.qualified_id} (Mode {mode.name}): sampled {value} from {self!r}")
        return value

    def sample(self):
        return self.sample_int()

    def sample_float(self) -> float:
        """The sampled integer as a float."""
        return float(self.sample_int())

    @abstractmethod
    def _sample_int_by_mode(self, mode: SampleMode) -> int:
        ...


# =============================================================================
# CONTINUOUS FAMILIES
# =============================================================================

class Normal(ContinuousDistribution):
    """
    Normal distribution.

    Parameters
    ----------
    mean : float
        Distribution mean (the collapsed value).
    sd : float
        Standard deviation, > 0.
    """

    family = DistributionFamily.NORMAL
    _PARAM_NAMES = ("mean", "sd")

    mean = _parameter("mean", "Distribution mean.")
    sd = _parameter("sd", "Standard deviation (> 0).")

    def __init__(self, mean: float, sd: float):
        super().__init__()
        self._init_params(mean=mean, sd=sd)

    @classmethod
    def _validate(cls, params):
        return {
            "mean": _finite("mean", params["mean"]),
            "sd": _positive("sd", params["sd"]),
        }

    def _sample_by_mode(self, mode):
        if mode is SampleMode.COLLAPSE_MID:
            return self._mean
        return self.sampler.sample_normal(self._mean, self._sd)

    def __repr__(self):
        return f"N({self._mean},{self._sd})"


class Uniform(ContinuousDistribution):
    """
    Continuous uniform distribution on [low, high).

    Collapses to the midpoint (low + high) / 2.
    """

    family = DistributionFamily.UNIFORM
    _PARAM_NAMES = ("low", "high")

    low = _parameter("low", "Lower bound.")
    high = _parameter("high", "Upper bound (>= low).")

    def __init__(self, low: float, high: float):
        super().__init__()
        self._init_params(low=low, high=high)

    @classmethod
    def _validate(cls, params):
        low = _finite("low", params["low"])
        high = _finite("high", params["high"])
        if high < low:
            raise InvalidParameterError(f"Uniform high {high} is less than low {low}")
        return {"low": low, "high": high}

    def _sample_by_mode(self, mode):
        if mode is SampleMode.COLLAPSE_MID:
            return (self._low + self._high) / 2.0
        return self.sampler.sample_uniform(self._low, self._high)

    def __repr__(self):
        return f"U({self._low},{self._high})"


class Exponential(ContinuousDistribution):
    """Exponential distribution parameterised by its mean (1 / rate)."""

    family = DistributionFamily.EXPONENTIAL
    _PARAM_NAMES = ("mean",)

    mean = _parameter("mean", "Distribution mean (> 0).")

    def __init__(self, mean: float):
        super().__init__()
        self._init_params(mean=mean)

    @classmethod
    def _validate(cls, params):
        return {"mean": _positive("mean", params["mean"])}

    def _sample_by_mode(self, mode):
        if mode is SampleMode.COLLAPSE_MID:
            return self._mean
        return self.sampler.sample_exponential(self._mean)

    def __repr__(self):
        return f"EXP({self._mean})"


class FixedContinuous(ContinuousDistribution):
    """
    Degenerate distribution always returning `value`.

    Useful as a drop-in stand-in for a real distribution. It still has to be
    registered, so the run settings record it.
    """

    family = DistributionFamily.FIXED_CONTINUOUS
    _PARAM_NAMES = ("value",)

    value = _parameter("value", "The fixed outcome.")

    def __init__(self, value: float):
        super().__init__()
        self._init_params(value=value)

    @classmethod
    def _validate(cls, params):
        return {"value": _finite("value", params["value"])}

    def _sample_by_mode(self, mode):
        return self._value

    def __repr__(self):
        return f"FixedContinuous({self._value})"


class Triangular(ContinuousDistribution):
    """
    Triangular distribution with lower limit, mode and upper limit.

    Notes
    -----
    The collapsed value is round((low + mode + high) / 3) with halves
    rounded up, which is neither the mean nor the median of the
    triangular distribution.
    """

    family = DistributionFamily.TRIANGULAR
    _PARAM_NAMES = ("low", "mode", "high")

    low = _parameter("low", "Minimum outcome.")
    mode = _parameter("mode", "Modal outcome (low <= mode <= high).")
    high = _parameter("high", "Maximum outcome (> low).")

    def __init__(self, low: float, mode: float, high: float):
        super().__init__()
        self._init_params(low=low, mode=mode, high=high)

    @classmethod
    def _validate(cls, params):
        low = _finite("low", params["low"])
        mode = _finite("mode", params["mode"])
        high = _finite("high", params["high"])
        if high <= low or mode < low or mode > high:
            raise InvalidParameterError(
                f"Triangular parameters ({low}, {mode}, {high}) are not consistent"
            )
        return {"low": low, "mode": mode, "high": high}

    def _sample_by_mode(self, mode):
        if mode is SampleMode.COLLAPSE_MID:
            return float(round_half_up((self._low + self._mode + self._high) / 3.0))
        return self.sampler.sample_triangular(self._low, self._mode, self._high)

    def __repr__(self):
        return f"Triangular({self._low}, {self._mode}, {self._high})"


class Weibull(ContinuousDistribution):
    """
    Weibull distribution with shape k and scale lambda.

    Collapses to the mean, scale * Gamma(1 + 1/shape), computed on first use
    and cached until a parameter changes.
    """

    family = DistributionFamily.WEIBULL
    _PARAM_NAMES = ("shape", "scale")

    shape = _parameter("shape", "Shape parameter (> 0).")
    scale = _parameter("scale", "Scale parameter (> 0).")

    def __init__(self, shape: float, scale: float):
        super().__init__()
        self._mean: Optional[float] = None
        self._init_params(shape=shape, scale=scale)

    @classmethod
    def _validate(cls, params):
        return {
            "shape": _positive("shape", params["shape"]),
            "scale": _positive("scale", params["scale"]),
        }

    def _params_changed(self):
        self._mean = None

    @property
    def mean(self) -> float:
        """Distribution mean (cached)."""
        if self._mean is None:
            self._mean = float(self._scale * gamma(1.0 + 1.0 / self._shape))
        return self._mean

    def _sample_by_mode(self, mode):
        if mode is SampleMode.COLLAPSE_MID:
            return self.mean
        return self.sampler.sample_weibull(self._shape, self._scale)

    def __repr__(self):
        return f"Weibull({self._shape},{self._scale})"


# =============================================================================
# DISCRETE FAMILIES
# =============================================================================

class Poisson(DiscreteDistribution):
    """Poisson distribution with mean `lam` (>= 0). Collapses to round(lam)."""

    family = DistributionFamily.POISSON
    _PARAM_NAMES = ("lam",)

    lam = _parameter("lam", "Mean number of events (>= 0).")

    def __init__(self, lam: float):
        super().__init__()
        self._init_params(lam=lam)

    @classmethod
    def _validate(cls, params):
        lam = _finite("lam", params["lam"])
        if lam < 0.0:
            raise InvalidParameterError(f"Lambda value {lam} is < 0")
        return {"lam": lam}

    def _sample_int_by_mode(self, mode):
        if mode is SampleMode.COLLAPSE_MID:
            return round_half_up(self._lam)
        return self.sampler.sample_poisson(self._lam)

    def __repr__(self):
        return f"Poisson({self._lam})"


class Geometric(DiscreteDistribution):
    """
    Geometric distribution counting failures before the first success.

    Parameters
    ----------
    p : float
        Success probability per trial, in (0, 1].

    Collapses to round((1 - p) / p), the rounded mean.
    """

    family = DistributionFamily.GEOMETRIC
    _PARAM_NAMES = ("p",)

    p = _parameter("p", "Success probability per trial, in (0,1].")

    def __init__(self, p: float):
        super().__init__()
        self._init_params(p=p)

    @classmethod
    def _validate(cls, params):
        return {"p": _probability("p", params["p"], low_open=True)}

    def _sample_int_by_mode(self, mode):
        if mode is SampleMode.COLLAPSE_MID:
            return round_half_up((1.0 - self._p) / self._p)
        return self.sampler.sample_geometric(self._p)

    def __repr__(self):
        return f"Geometric({self._p})"


class NegativeBinomial(DiscreteDistribution):
    """
    Negative binomial distribution counting failures before `n` successes.

    Parameters
    ----------
    n : int
        Number of successes, > 0.
    p : float
        Success probability per trial, in (0, 1).

    Collapses to round(n * (1 - p) / p), the rounded mean.
    """

    family = DistributionFamily.NEGATIVE_BINOMIAL
    _PARAM_NAMES = ("n", "p")

    n = _parameter("n", "Number of successes (> 0).")
    p = _parameter("p", "Success probability per trial, in (0,1).")

    def __init__(self, n: int, p: float):
        super().__init__()
        self._init_params(n=n, p=p)

    @classmethod
    def _validate(cls, params):
        return {
            "n": _positive_int("n", params["n"]),
            "p": _probability("p", params["p"], low_open=True, high_open=True),
        }

    def _sample_int_by_mode(self, mode):
        if mode is SampleMode.COLLAPSE_MID:
            return round_half_up(self._n * (1.0 - self._p) / self._p)
        return self.sampler.sample_negative_binomial(self._n, self._p)

    def __repr__(self):
        return f"NegBin({self._n}, {self._p})"
