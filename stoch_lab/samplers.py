"""
samplers.py - Host Sampler Engines and the Engine Registry

A Sampler is the boundary between stoch_lab and whatever produces raw random
variates for one simulation run. Distributions never touch an RNG directly:
they hand their canonical parameters to the run's sampler.

This module provides:
- Sampler: Abstract host contract (one method per family + a support query)
- NumpySampler: Engine backed by a per-run np.random.Generator
- ScipySampler: Engine backed by scipy.stats with a per-run Generator
- DummySampler: Engine supporting no families (for models without one)
- SamplerRegistry: Repository of engines, addressed by name

Design Principles:
-----------------
1. One sampler per run: a sampler owns exactly one RNG stream and is never
   shared between runs
2. Canonical parameterisation: every `sample_*` method takes the family's
   canonical parameters; translation to the engine's own parameterisation
   (scale vs. rate, shifted supports, shape conventions) happens once, here
3. 1-based raw outcomes: Bernoulli returns 1 (FAILURE) or 2 (SUCCESS) and
   discrete uniform returns 1..k, so categorical mapping is engine-agnostic

Example Usage:
-------------
    >>> from stoch_lab.samplers import SamplerRegistry
    >>>
    >>> registry = SamplerRegistry()
    >>> sampler = registry.create("numpy", seed=42)
    >>> sampler.sample_normal(0.0, 1.0)
    0.30471707975443135
"""

from __future__ import annotations

import numpy as np
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

from scipy import stats

from .types import DistributionFamily, UnsupportedDistributionError


SeedLike = Union[None, int, np.random.SeedSequence]


# =============================================================================
# SAMPLER CONTRACT
# =============================================================================

class Sampler(ABC):
    """
    Abstract per-run sampling engine.

    Subclasses implement one method per supported family plus `supports()`.
    A sampler holds no distribution state: it only turns explicit parameters
    into raw variates.

    Notes
    -----
    Canonical parameterisations:

    ==================  =====================================================
    normal              mean, sd
    uniform             low, high (continuous, [low, high))
    exponential         mean (= 1 / rate)
    uniform_discrete    k; returns an int in 1..k
    bernoulli           p; returns 1 (FAILURE) or 2 (SUCCESS)
    poisson             lam
    geometric           p; failures before the first success (0, 1, 2, ...)
    negative_binomial   n, p; failures before the n-th success
    triangular          low, mode, high
    weibull             shape, scale
    ==================  =====================================================
    """

    engine_name: str = "abstract"

    @abstractmethod
    def supports(self, family: DistributionFamily) -> bool:
        """Whether this engine can serve draws for the given family."""

    @abstractmethod
    def sample_normal(self, mean: float, sd: float) -> float:
        ...

    @abstractmethod
    def sample_uniform(self, low: float, high: float) -> float:
        ...

    @abstractmethod
    def sample_exponential(self, mean: float) -> float:
        ...

    @abstractmethod
    def sample_uniform_discrete(self, k: int) -> int:
        ...

    @abstractmethod
    def sample_bernoulli(self, p: float) -> int:
        ...

    @abstractmethod
    def sample_poisson(self, lam: float) -> int:
        ...

    @abstractmethod
    def sample_geometric(self, p: float) -> int:
        ...

    @abstractmethod
    def sample_negative_binomial(self, n: int, p: float) -> int:
        ...

    @abstractmethod
    def sample_triangular(self, low: float, mode: float, high: float) -> float:
        ...

    @abstractmethod
    def sample_weibull(self, shape: float, scale: float) -> float:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(engine='{self.engine_name}')"


# Families that never need a sampler draw (collapse or fixed value only).
_SAMPLER_FREE_FAMILIES = frozenset({
    DistributionFamily.FIXED_CONTINUOUS,
    DistributionFamily.LOOKUP_BY_ENUMS,
})


# =============================================================================
# NUMPY ENGINE
# =============================================================================

class NumpySampler(Sampler):
    """
    Sampler backed by a single `np.random.Generator` stream.

    Parameters
    ----------
    seed : int, np.random.SeedSequence or None
        Seed for the run's stream. Experiments pass a child SeedSequence per
        run so streams are statistically independent.
    rng : np.random.Generator, optional
        Use this generator directly instead of seeding a new one.

    Examples
    --------
    >>> sampler = NumpySampler(seed=7)
    >>> 1 <= sampler.sample_uniform_discrete(6) <= 6
    True
    """

    engine_name = "numpy"

    def __init__(self, seed: SeedLike = None, rng: Optional[np.random.Generator] = None):
        self._rng = rng if rng is not None else np.random.default_rng(seed)

    @property
    def rng(self) -> np.random.Generator:
        """The random number generator owned by this sampler."""
        return self._rng

    def supports(self, family: DistributionFamily) -> bool:
        return True

    def unit_draw(self) -> float:
        """A single U[0, 1) draw; the primitive behind Bernoulli trials."""
        return float(self._rng.random())

    def sample_normal(self, mean: float, sd: float) -> float:
        return float(self._rng.normal(mean, sd))

    def sample_uniform(self, low: float, high: float) -> float:
        return float(self._rng.uniform(low, high))

    def sample_exponential(self, mean: float) -> float:
        # numpy's exponential takes the scale, which is the mean
        return float(self._rng.exponential(mean))

    def sample_uniform_discrete(self, k: int) -> int:
        return int(self._rng.integers(1, k + 1))

    def sample_bernoulli(self, p: float) -> int:
        # SUCCESS occupies the top p of the unit interval
        return 2 if self.unit_draw() >= 1.0 - p else 1

    def sample_poisson(self, lam: float) -> int:
        return int(self._rng.poisson(lam))

    def sample_geometric(self, p: float) -> int:
        # numpy counts trials (support 1, 2, ...); we count failures
        return int(self._rng.geometric(p)) - 1

    def sample_negative_binomial(self, n: int, p: float) -> int:
        return int(self._rng.negative_binomial(n, p))

    def sample_triangular(self, low: float, mode: float, high: float) -> float:
        return float(self._rng.triangular(low, mode, high))

    def sample_weibull(self, shape: float, scale: float) -> float:
        # numpy only draws the standard (scale 1) Weibull
        return float(scale * self._rng.weibull(shape))


# =============================================================================
# SCIPY ENGINE
# =============================================================================

class ScipySampler(Sampler):
    """
    Sampler drawing through `scipy.stats` distribution objects.

    scipy uses location/scale/shape parameterisations that differ from the
    canonical ones (triangular `c` is the relative mode position, `geom`
    counts trials, `expon` has a scale); all translation happens in this
    class.

    Parameters
    ----------
    seed : int, np.random.SeedSequence or None
        Seed for the run's stream.
    """

    engine_name = "scipy"

    def __init__(self, seed: SeedLike = None):
        self._rng = np.random.default_rng(seed)

    @property
    def rng(self) -> np.random.Generator:
        """The random number generator passed to scipy as `random_state`."""
        return self._rng

    def supports(self, family: DistributionFamily) -> bool:
        return True

    def _draw(self, frozen) -> float:
        return frozen.rvs(random_state=self._rng)

    def sample_normal(self, mean: float, sd: float) -> float:
        return float(self._draw(stats.norm(loc=mean, scale=sd)))

    def sample_uniform(self, low: float, high: float) -> float:
        return float(self._draw(stats.uniform(loc=low, scale=high - low)))

    def sample_exponential(self, mean: float) -> float:
        return float(self._draw(stats.expon(scale=mean)))

    def sample_uniform_discrete(self, k: int) -> int:
        # randint's upper bound is exclusive
        return int(self._draw(stats.randint(1, k + 1)))

    def sample_bernoulli(self, p: float) -> int:
        return int(self._draw(stats.bernoulli(p))) + 1

    def sample_poisson(self, lam: float) -> int:
        if lam == 0.0:
            return 0
        return int(self._draw(stats.poisson(lam)))

    def sample_geometric(self, p: float) -> int:
        return int(self._draw(stats.geom(p))) - 1

    def sample_negative_binomial(self, n: int, p: float) -> int:
        return int(self._draw(stats.nbinom(n, p)))

    def sample_triangular(self, low: float, mode: float, high: float) -> float:
        width = high - low
        c = (mode - low) / width
        return float(self._draw(stats.triang(c, loc=low, scale=width)))

    def sample_weibull(self, shape: float, scale: float) -> float:
        return float(self._draw(stats.weibull_min(shape, scale=scale)))


# =============================================================================
# DUMMY ENGINE
# =============================================================================

class DummySampler(Sampler):
    """
    Sampler that supports no families.

    Intended for models that only ever run collapsed, or as a base class for
    a host-specific engine that overrides just the methods it needs (and
    `supports()` accordingly).
    """

    engine_name = "dummy"

    _UNSUPPORTED_MSG = "Dummy sampler supports no distributions"

    def __init__(self, seed: SeedLike = None):
        # Seed accepted for factory compatibility only
        pass

    def supports(self, family: DistributionFamily) -> bool:
        return family in _SAMPLER_FREE_FAMILIES

    def _unsupported(self):
        raise UnsupportedDistributionError(self._UNSUPPORTED_MSG)

    def sample_normal(self, mean, sd):
        self._unsupported()

    def sample_uniform(self, low, high):
        self._unsupported()

    def sample_exponential(self, mean):
        self._unsupported()

    def sample_uniform_discrete(self, k):
        self._unsupported()

    def sample_bernoulli(self, p):
        self._unsupported()

    def sample_poisson(self, lam):
        self._unsupported()

    def sample_geometric(self, p):
        self._unsupported()

    def sample_negative_binomial(self, n, p):
        self._unsupported()

    def sample_triangular(self, low, mode, high):
        self._unsupported()

    def sample_weibull(self, shape, scale):
        self._unsupported()


# =============================================================================
# ENGINE REGISTRY
# =============================================================================

SamplerFactory = Callable[[SeedLike], Sampler]


@dataclass
class SamplerInfo:
    """
    Metadata about a registered sampler engine.

    Attributes
    ----------
    name : str
        Canonical engine name (lowercase).
    factory : Callable
        Creates a fresh sampler. Signature: f(seed) -> Sampler.
    description : str
        Human-readable description of the engine.
    """
    name: str
    factory: SamplerFactory
    description: str = ""


class SamplerRegistry:
    """
    Repository of available sampler engines.

    Built-in engines (`numpy`, `scipy`, `dummy`) are pre-registered; host
    integrations register their own.

    Examples
    --------
    >>> registry = SamplerRegistry()
    >>> registry.list_engines()
    ['dummy', 'numpy', 'scipy']
    >>>
    >>> # Register a host-specific engine
    >>> registry.register(
    ...     name="host",
    ...     factory=lambda seed: MyHostSampler(seed),
    ...     description="Sampler bound to the host engine's RNG"
    ... )
    """

    def __init__(self):
        """Initialize with built-in engines."""
        self._engines: Dict[str, SamplerInfo] = {}
        self._register_builtins()

    def _register_builtins(self) -> None:
        """Register the standard set of engines."""
        self.register(
            name="numpy",
            factory=NumpySampler,
            description="numpy Generator (PCG64) stream per run"
        )
        self.register(
            name="scipy",
            factory=ScipySampler,
            description="scipy.stats distributions over a per-run Generator"
        )
        self.register(
            name="dummy",
            factory=DummySampler,
            description="Supports no distributions (collapsed-only models)"
        )

    def register(self, name: str, factory: SamplerFactory, description: str = "") -> None:
        """
        Register a new engine (or replace an existing one).

        Parameters
        ----------
        name : str
            Engine name (will be lowercased).
        factory : Callable
            Called with a seed to create one sampler per run.
        description : str, optional
            Human-readable description.
        """
        name_lower = name.lower()
        self._engines[name_lower] = SamplerInfo(
            name=name_lower,
            factory=factory,
            description=description
        )

    def get(self, name: str) -> SamplerInfo:
        """
        Retrieve a registered engine.

        Raises
        ------
        KeyError
            If the engine is not registered.
        """
        name_lower = name.lower()

        if name_lower not in self._engines:
            available = ", ".join(sorted(self._engines.keys()))
            raise KeyError(
                f"Unknown sampler engine '{name}'. Available: {available}"
            )

        return self._engines[name_lower]

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._engines

    def list_engines(self) -> List[str]:
        """Sorted list of registered engine names."""
        return sorted(self._engines.keys())

    def create(self, name: str, seed: SeedLike = None) -> Sampler:
        """
        Create a fresh sampler for one run.

        Parameters
        ----------
        name : str
            Engine name (case-insensitive).
        seed : int, np.random.SeedSequence or None
            Seed for the new sampler's stream.
        """
        return self.get(name).factory(seed)


# Shared default registry used when callers do not supply their own
default_registry = SamplerRegistry()
