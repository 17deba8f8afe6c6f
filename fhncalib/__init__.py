"""FitzHugh-Nagumo Bayesian calibration benchmark.

Re-exports the pieces most scripts and notebooks need so they can import
from `fhncalib` directly; the sampling back-ends live in `fhncalib.runners`.
"""

from fhncalib.config_schema import (  # noqa: F401
    ExperimentConfig,
    NoisePrior,
    Parameter,
    SamplerConfig,
    SolverConfig,
)
from fhncalib.datagen import (  # noqa: F401
    SyntheticDataset,
    generate_dataset,
    observation_noise,
    observation_times,
)
from fhncalib.model import ODEProblem, fitzhugh_nagumo, fitzhugh_nagumo_problem  # noqa: F401
from fhncalib.priors import PriorConfigError, build_priors  # noqa: F401
from fhncalib.solver import IntegrationError, Trajectory, solve  # noqa: F401

__version__ = "0.1.0"
