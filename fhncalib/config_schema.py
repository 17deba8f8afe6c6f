from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


@dataclass
class Parameter:
    """
    Represents a structural parameter of the vector field and its prior.

    Attributes:
        name (str): Name of the parameter.
        loc (float): Mean of the (untruncated) normal prior.
        scale (float): Standard deviation of the (untruncated) normal prior.
        range (Tuple[float, float]): Truncation bounds (lower, upper) of the prior.
        true_value (Optional[float]): Value used to generate synthetic data.
    """

    name: str
    loc: float
    scale: float
    range: Tuple[float, float]
    true_value: Optional[float] = None


@dataclass
class NoisePrior:
    """
    Inverse-gamma prior over the observation noise variance.

    Attributes:
        name (str): Name of the variance parameter.
        concentration (float): Shape of the inverse-gamma distribution.
        rate (float): Scale (rate) of the inverse-gamma distribution.
    """

    name: str = "sigma2"
    concentration: float = 2.0
    rate: float = 3.0


@dataclass
class SamplerConfig:
    """
    MCMC settings for one inference back-end.

    Attributes:
        n_warm_up_iter (int): Number of adaptation iterations per chain.
        n_main_iter (int): Number of retained draws per chain.
        n_chain (int): Number of independent chains.
        seed (int): Random seed for the chains.
        target_accept (float): Target acceptance statistic for step size adaptation.
        max_num_doublings (int): Maximum tree doublings (blackjax NUTS).
        max_tree_depth (int): Maximum tree depth (mici).
        num_integration_steps (int): Leapfrog steps per iteration (static HMC).
        n_process (int): Number of worker processes for chains (mici).
    """

    n_warm_up_iter: int = 1000
    n_main_iter: int = 1000
    n_chain: int = 2
    seed: int = 1234
    target_accept: float = 0.8
    max_num_doublings: int = 10
    max_tree_depth: int = 10
    num_integration_steps: int = 10
    n_process: int = 1


@dataclass
class SolverConfig:
    """
    Adaptive ODE integrator settings.

    Attributes:
        method (str): Name of an explicit adaptive diffrax solver.
        rtol (float): Relative tolerance of the step-size controller.
        atol (float): Absolute tolerance of the step-size controller.
        max_steps (int): Step budget before the solve is reported as failed.
    """

    method: str = "Tsit5"
    rtol: float = 1e-6
    atol: float = 1e-8
    max_steps: int = 4096


@dataclass
class ExperimentConfig:
    """
    Configuration for a full benchmark experiment.

    Attributes:
        name (str): Name of the experiment.
        parameters (List[Parameter]): Structural parameters in vector-field order.
        noise_prior (NoisePrior): Prior over the observation noise variance.
        initial_state (Tuple[float, float]): State at the start of the time span.
        tspan (Tuple[float, float]): Integration time span.
        obs_times (Tuple[float, float, int]): Start, stop and number of observation times.
        obs_noise_std (float): Standard deviation of the synthetic observation noise.
        data_seed (int): Seed used to draw the observation noise.
        solver (SolverConfig): Integrator tolerances.
        samplers (Dict[str, SamplerConfig]): Sampler settings per back-end name.
        backends (List[str]): Back-ends run by default.
    """

    name: str
    parameters: List[Parameter]
    noise_prior: NoisePrior = field(default_factory=NoisePrior)

    initial_state: Tuple[float, float] = (1.0, 1.0)
    tspan: Tuple[float, float] = (0.0, 10.0)

    obs_times: Tuple[float, float, int] = (1.0, 10.0, 10)
    obs_noise_std: float = 0.20
    data_seed: int = 42

    solver: SolverConfig = field(default_factory=SolverConfig)
    samplers: Dict[str, SamplerConfig] = field(default_factory=dict)
    backends: List[str] = field(default_factory=list)

    @property
    def parameter_names(self) -> List[str]:
        return [p.name for p in self.parameters]

    @property
    def true_params(self) -> Tuple[float, ...]:
        return tuple(p.true_value for p in self.parameters)

    def sampler_config(self, backend: str) -> SamplerConfig:
        """Return the sampler settings for a back-end, falling back to defaults."""
        return self.samplers.get(backend, SamplerConfig())
