from fhncalib.config_schema import (
    ExperimentConfig,
    NoisePrior,
    Parameter,
    SamplerConfig,
    SolverConfig,
)

experiment_config = ExperimentConfig(
    name="fitzhugh_nagumo",
    parameters=[
        Parameter(name="a", loc=1.0, scale=0.5, range=(0.0, 1.5), true_value=0.7),
        Parameter(name="b", loc=1.0, scale=0.5, range=(0.0, 1.5), true_value=0.8),
        Parameter(
            name="tau_inv", loc=0.0, scale=0.5, range=(0.0, 0.5), true_value=0.08
        ),
        Parameter(name="l", loc=0.5, scale=0.5, range=(0.0, 1.0), true_value=0.5),
    ],
    noise_prior=NoisePrior(name="sigma2", concentration=2.0, rate=3.0),
    initial_state=(1.0, 1.0),
    tspan=(0.0, 10.0),
    obs_times=(1.0, 10.0, 10),
    obs_noise_std=0.20,
    data_seed=42,
    solver=SolverConfig(method="Tsit5", rtol=1e-6, atol=1e-8, max_steps=4096),
    samplers={
        "blackjax": SamplerConfig(
            n_warm_up_iter=1000,
            n_main_iter=1000,
            n_chain=2,
            target_accept=0.8,
            max_num_doublings=10,
        ),
        # Longer chains and a lower acceptance target for the out-of-process sampler.
        "mici": SamplerConfig(
            n_warm_up_iter=1000,
            n_main_iter=10_000,
            n_chain=1,
            target_accept=0.65,
            max_tree_depth=10,
            n_process=1,
        ),
        "numpyro": SamplerConfig(
            n_warm_up_iter=1000,
            n_main_iter=1000,
            n_chain=2,
            target_accept=0.65,
            max_num_doublings=10,
        ),
        "hmc": SamplerConfig(
            n_warm_up_iter=1000,
            n_main_iter=1000,
            n_chain=2,
            target_accept=0.8,
            num_integration_steps=10,
        ),
    },
    backends=["blackjax", "mici", "numpyro"],
)

