from functools import partial
from typing import Any, Callable, Dict

import blackjax
import jax
import jax.numpy as jnp
import numpy as np
from jax import config

from fhncalib.priors import constrain, initial_position, make_log_posterior
from fhncalib.runners.base import BaseRunner

config.update("jax_enable_x64", True)


def run_window_adapted_chains(
    log_prob: Callable,
    position,
    algorithm,
    seed: int,
    n_chain: int,
    n_warm_up_iter: int,
    n_main_iter: int,
    target_accept: float = 0.8,
    **kernel_kwargs,
):
    """Window-adapted blackjax sampling, vectorised over chains.

    Every chain starts from `position` (an array or pytree) and gets its own
    PRNG key for both warm-up and sampling.

    Returns:
        positions: pytree like `position` with leading axes (n_chain, n_main_iter).
        diverging: bool array (n_chain, n_main_iter).
        acceptance: array (n_chain, n_main_iter) of acceptance rates.
        adapted: dict of adapted step size and inverse mass matrix per chain.
    """
    key = jax.random.PRNGKey(seed)
    key, warmup_key, sample_key = jax.random.split(key, 3)

    warmup = blackjax.window_adaptation(
        algorithm,
        log_prob,
        target_acceptance_rate=target_accept,
        **kernel_kwargs,
    )

    # Initial positions for multiple chains: (n_chain, ...)
    initial_positions = jax.tree.map(
        lambda x: jnp.broadcast_to(x, (n_chain,) + jnp.shape(x)), position
    )
    warmup_keys = jax.random.split(warmup_key, n_chain)

    @jax.jit
    def run_warmup(keys, initial_positions):
        return jax.vmap(partial(warmup.run, num_steps=n_warm_up_iter))(
            keys, initial_positions
        )

    (state, parameters), _ = run_warmup(warmup_keys, initial_positions)
    adapted = {
        "step_size": parameters["step_size"],
        "inverse_mass_matrix": parameters["inverse_mass_matrix"],
    }

    @jax.jit
    def run_inference(rng_key, initial_state, adapted):
        def step_fn(key, state, step_size, inverse_mass_matrix):
            kernel = algorithm(
                log_prob,
                step_size=step_size,
                inverse_mass_matrix=inverse_mass_matrix,
                **kernel_kwargs,
            ).step
            return kernel(key, state)

        # vmap over chains: key(0), state(0), params(0)
        step_fn_vmap = jax.vmap(step_fn)

        def one_step(state, keys):
            new_state, info = step_fn_vmap(
                keys, state, adapted["step_size"], adapted["inverse_mass_matrix"]
            )
            return new_state, (new_state.position, info.is_divergent, info.acceptance_rate)

        # Keys: (n_main_iter, n_chain)
        keys = jax.random.split(rng_key, n_main_iter)
        keys = jax.vmap(lambda k: jax.random.split(k, n_chain))(keys)

        _, trace = jax.lax.scan(one_step, initial_state, keys)
        return trace

    positions, diverging, acceptance = run_inference(sample_key, state, adapted)

    # Scan stacks iterations first; we want (n_chain, n_main_iter, ...)
    positions = jax.tree.map(lambda x: jnp.swapaxes(x, 0, 1), positions)
    return (
        positions,
        np.asarray(jnp.swapaxes(diverging, 0, 1)),
        np.asarray(jnp.swapaxes(acceptance, 0, 1)),
        adapted,
    )


def adapted_parameters(adapted: Dict[str, Any], acceptance: np.ndarray) -> Dict[str, Any]:
    return {
        "step_size": np.asarray(adapted["step_size"]).tolist(),
        "inverse_mass_matrix": jax.tree.map(
            lambda x: np.asarray(x).tolist(), adapted["inverse_mass_matrix"]
        ),
        "mean_acceptance_rate": float(np.mean(acceptance)),
    }


class BlackjaxRunner(BaseRunner):
    """NUTS over the hand-assembled log posterior of the ODE model."""

    backend_name = "blackjax"
    algorithm_name = "nuts"

    def kernel_kwargs(self) -> Dict[str, Any]:
        return {"max_num_doublings": self.sampler_config.max_num_doublings}

    @property
    def algorithm(self):
        return blackjax.nuts

    def _run(self) -> Dict[str, Any]:
        log_prob = jax.jit(
            make_log_posterior(
                self.problem, self.times, self.data, self.priors, self.solver_config
            )
        )
        cfg = self.sampler_config
        kernel_kwargs = self.kernel_kwargs()

        positions, diverging, acceptance, adapted = run_window_adapted_chains(
            log_prob,
            initial_position(self.priors),
            self.algorithm,
            seed=cfg.seed,
            n_chain=cfg.n_chain,
            n_warm_up_iter=cfg.n_warm_up_iter,
            n_main_iter=cfg.n_main_iter,
            target_accept=cfg.target_accept,
            **kernel_kwargs,
        )

        algorithm_parameters = dict(kernel_kwargs)
        algorithm_parameters.update(adapted_parameters(adapted, acceptance))

        return {
            "samples": constrain(self.priors, positions),
            "diverging": diverging,
            "algorithm_parameters": algorithm_parameters,
        }
