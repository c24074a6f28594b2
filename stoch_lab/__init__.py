"""
stoch_lab - Per-Run Stochastic Items, Sample-Mode Overrides and Experiments
"""

__version__ = "1.0.0"

# =============================================================================
# CORE TYPES
# =============================================================================
from .types import (
    RunId,
    SampleMode,
    Binary,
    DistributionFamily,
    LockState,
    Range,
    CUMULATIVE_PROB_TOLERANCE,
    ALL_GROUP_ID,
    StochLabError,
    InvalidParameterError,
    ProtocolViolationError,
    UnregisteredItemError,
    DistributionLockedError,
    RegistrationError,
    UnsupportedDistributionError,
)

# =============================================================================
# SAMPLERS
# =============================================================================
from .samplers import (
    Sampler,
    NumpySampler,
    ScipySampler,
    DummySampler,
    SamplerInfo,
    SamplerRegistry,
    default_registry,
)

# =============================================================================
# DISTRIBUTIONS
# =============================================================================
from .distributions import (
    StochasticItem,
    Distribution,
    ContinuousDistribution,
    DiscreteDistribution,
    Normal,
    Uniform,
    Exponential,
    FixedContinuous,
    Triangular,
    Weibull,
    Poisson,
    Geometric,
    NegativeBinomial,
)
from .categorical import (
    CategoricalDistribution,
    Bernoulli,
    CustomCategorical,
    UniformDiscrete,
)
from .lookup import (
    MultiDimLookup,
    LookupByEnums,
)

# =============================================================================
# IDENTITY, CONFIGURATION & REGISTRATION
# =============================================================================
from .access import (
    AccessInfo,
    Accessor,
    register_accessor_free,
)
from .config import (
    OverrideConfig,
    STOCH_CONTROL_FILE,
)
from .registry import (
    RunRegistry,
    RunDirectory,
)

# =============================================================================
# I/O
# =============================================================================
from .io import (
    ItemSnapshot,
    RunSettings,
    SettingsFormat,
    snapshot_item,
    save_run_settings,
    load_run_settings,
)

# =============================================================================
# EXPERIMENTS
# =============================================================================
from .simulation import (
    ExperimentConfig,
    RunResult,
    Experiment,
    run_experiment,
)

# =============================================================================
# PUBLIC API
# =============================================================================
__all__ = [
    "__version__",
    "RunId",
    "SampleMode",
    "Binary",
    "DistributionFamily",
    "LockState",
    "Range",
    "CUMULATIVE_PROB_TOLERANCE",
    "ALL_GROUP_ID",
    "StochLabError",
    "InvalidParameterError",
    "ProtocolViolationError",
    "UnregisteredItemError",
    "DistributionLockedError",
    "RegistrationError",
    "UnsupportedDistributionError",
    "Sampler",
    "NumpySampler",
    "ScipySampler",
    "DummySampler",
    "SamplerInfo",
    "SamplerRegistry",
    "default_registry",
    "StochasticItem",
    "Distribution",
    "ContinuousDistribution",
    "DiscreteDistribution",
    "Normal",
    "Uniform",
    "Exponential",
    "FixedContinuous",
    "Triangular",
    "Weibull",
    "Poisson",
    "Geometric",
    "NegativeBinomial",
    "CategoricalDistribution",
    "Bernoulli",
    "CustomCategorical",
    "UniformDiscrete",
    "MultiDimLookup",
    "LookupByEnums",
    "AccessInfo",
    "Accessor",
    "register_accessor_free",
    "OverrideConfig",
    "STOCH_CONTROL_FILE",
    "RunRegistry",
    "RunDirectory",
    "ItemSnapshot",
    "RunSettings",
    "SettingsFormat",
    "snapshot_item",
    "save_run_settings",
    "load_run_settings",
    "ExperimentConfig",
    "RunResult",
    "Experiment",
    "run_experiment",
]
