from typing import Dict, Optional, Sequence

import arviz
import matplotlib.pyplot as plt
import numpy as np

from fhncalib.datagen import SyntheticDataset
from fhncalib.datahandler import InferenceResult, to_inference_data
from fhncalib.model import ODEProblem, STATE_NAMES
from fhncalib.priors import PriorSet
from fhncalib.solver import IntegrationError, solve

plot_style = {
    "mathtext.fontset": "cm",
    "font.family": "serif",
    "axes.titlesize": 10,
    "axes.labelsize": 10,
    "xtick.labelsize": 6,
    "ytick.labelsize": 6,
    "legend.fontsize": 8,
    "legend.frameon": False,
    "axes.linewidth": 0.5,
    "lines.linewidth": 0.5,
    "axes.labelpad": 2.0,
    "figure.dpi": 150,
}


def posterior_predictive_trajectories(
    problem: ODEProblem,
    result: InferenceResult,
    param_names: Sequence[str],
    ts: np.ndarray,
    num_samples: int = 50,
    seed: int = 0,
) -> np.ndarray:
    """
    Solve the ODE for a random subset of posterior draws.

    Returns:
        Array of shape (n_ok, n_states, len(ts)); draws whose solve fails are skipped.
    """
    draws = np.stack(
        [np.asarray(result.samples[name]).reshape(-1) for name in param_names], axis=-1
    )
    rng = np.random.default_rng(seed)
    idx = rng.choice(draws.shape[0], size=min(num_samples, draws.shape[0]), replace=False)

    trajectories = []
    for params in draws[idx]:
        try:
            trajectories.append(solve(problem, params=params, ts=ts).T)
        except IntegrationError:
            continue
    return np.asarray(trajectories)


def plot_data_and_trajectories(
    problem: ODEProblem,
    dataset: SyntheticDataset,
    results: Optional[Sequence[InferenceResult]] = None,
    param_names: Optional[Sequence[str]] = None,
    num_samples: int = 50,
    alpha: float = 0.2,
    num_points: int = 500,
    plot_style=plot_style,
) -> tuple[plt.Figure, np.ndarray]:
    """
    Plot the noisy observations against the true trajectory.

    Args:
        problem: ODE problem the data was generated from.
        dataset: The synthetic dataset.
        results: Optional back-end results; posterior-predictive trajectories
            are drawn for each successful one.
        param_names: Structural parameter names in vector-field order.
        num_samples: Number of posterior draws per back-end.
        alpha: Transparency of the posterior-predictive lines.
        num_points: Resolution of the plotted trajectories.
    Returns:
        Tuple containing the figure and axes of the plot.
    """
    t0, t1 = problem.tspan
    ts = np.linspace(t0, t1, num_points)
    true_states = solve(problem, params=dataset.true_params, ts=ts).T

    with plt.style.context(plot_style):
        fig, axes = plt.subplots(problem.n_states, 1, figsize=(6, 5), sharex=True)
        axes = np.atleast_1d(axes)
        color_cycle = plt.get_cmap("tab10")

        predictive = {}
        if results and param_names:
            for result in results:
                if result.ok:
                    predictive[result.backend] = posterior_predictive_trajectories(
                        problem, result, param_names, ts, num_samples=num_samples
                    )

        for k, ax in enumerate(axes):
            for j, (backend, trajectories) in enumerate(predictive.items()):
                for i, trajectory in enumerate(trajectories):
                    ax.plot(
                        ts,
                        trajectory[k],
                        color=color_cycle(j + 1),
                        alpha=alpha,
                        label=backend if i == 0 else None,
                    )
            ax.plot(ts, true_states[k], color="black", linewidth=1.0, label="True")
            ax.scatter(
                dataset.times,
                dataset.data[k],
                label="Observations",
                color="red",
                s=8,
                zorder=10,
            )
            name = STATE_NAMES[k] if k < len(STATE_NAMES) else f"u{k}"
            ax.set_ylabel(f"${name}$")
            ax.legend()
        axes[-1].set_xlabel("t")

    return fig, axes


def plot_posterior_chains_with_priors(
    result: InferenceResult,
    priors: PriorSet,
    true_values: Optional[Dict[str, float]] = None,
    figsize=(9, 12),
    plot_style=plot_style,
    **kwargs,
) -> np.ndarray:
    """Trace plot of every parameter with its prior density overlaid in red."""
    lines = None
    if true_values:
        lines = [(name, {}, value) for name, value in true_values.items()]

    with plt.style.context(plot_style):
        axes = arviz.plot_trace(
            to_inference_data(result),
            var_names=priors.names,
            figsize=figsize,
            legend=True,
            compact=False,
            lines=lines,
            **kwargs,
        )

    priors_by_name = {p.name: p for p in priors.all}
    for i in range(axes.shape[0]):
        title = axes[i, 0].get_title()
        if title not in priors_by_name:
            continue
        left, right = axes[i, 0].get_xlim()
        x = np.linspace(left, right, 1000)
        prior = priors_by_name[title]
        inside = np.asarray(prior.distribution.support(x))
        pdf = np.where(inside, np.exp(np.asarray(prior.log_prob(x))), 0.0)
        axes[i, 0].plot(x, pdf, color="red", linestyle="--", label="Prior")
        axes[i, 0].legend()

    return axes


def plot_timings(
    results: Sequence[InferenceResult], plot_style=plot_style
) -> tuple[plt.Figure, plt.Axes]:
    """Bar chart of elapsed wall-clock time per back-end; failed runs are hatched."""
    with plt.style.context(plot_style):
        fig, ax = plt.subplots(1, 1, figsize=(5, 3))
        names = [r.backend for r in results]
        elapsed = [r.elapsed if np.isfinite(r.elapsed) else 0.0 for r in results]
        bars = ax.bar(names, elapsed, color="tab:blue")
        for bar, result in zip(bars, results):
            if not result.ok:
                bar.set_hatch("//")
                bar.set_facecolor("lightgrey")
        ax.set_ylabel("Elapsed Time (s)")
        ax.set_title("Elapsed Times")
        fig.tight_layout()
    return fig, ax
