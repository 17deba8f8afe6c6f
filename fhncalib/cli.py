import argparse
import json
import os
from dataclasses import replace

import arviz as az
import matplotlib.pyplot as plt

from fhncalib.analysis import calibration_check
from fhncalib.datahandler import from_inference_data
from fhncalib.experiment import prepare, run_experiment, save_report
from fhncalib.logging_utils import setup_logging
from fhncalib.plotting import plot_posterior_chains_with_priors
from fhncalib.priors import build_priors
from fhncalib.runners import RUNNERS
from fhncalib.utils import load_experiment_config


def _add_sampler_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-W", "--warmup", dest="W", type=int, help="Warm-up iterations"
    )
    parser.add_argument("-N", "--main", dest="N", type=int, help="Main iterations")
    parser.add_argument("--seed", type=int, help="Sampler random seed")
    parser.add_argument("--n_chain", type=int, help="Number of chains")
    parser.add_argument(
        "--n_processes", type=int, help="Number of worker processes (mici only)"
    )


def _sampler_overrides(args) -> dict:
    overrides = {
        "n_warm_up_iter": args.W,
        "n_main_iter": args.N,
        "seed": args.seed,
        "n_chain": args.n_chain,
        "n_process": args.n_processes,
    }
    return {k: v for k, v in overrides.items() if v is not None}


def _common_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", type=str, help="Path to an experiment config module")
    common.add_argument("--log_level", type=str, default="INFO")
    common.add_argument("--log_file", type=str, help="Also write the log to this file")
    return common


def build_parser() -> argparse.ArgumentParser:
    common = _common_parser()
    parser = argparse.ArgumentParser(
        description="FitzHugh-Nagumo Bayesian calibration benchmark"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- RUN Command ---
    run_parser = subparsers.add_parser(
        "run", parents=[common], help="Compare inference back-ends"
    )
    run_parser.add_argument(
        "--backend",
        dest="backends",
        action="append",
        choices=sorted(RUNNERS),
        help="Back-end to run (repeatable); defaults to the config's back-ends",
    )
    run_parser.add_argument("--data_seed", type=int, help="Seed for the observation noise")
    run_parser.add_argument("--output_dir", type=str, help="Directory for chains, plots and report")
    _add_sampler_arguments(run_parser)

    # --- CALIBRATE Command ---
    calib_parser = subparsers.add_parser(
        "calibrate", parents=[common], help="Repeated-trial posterior calibration check"
    )
    calib_parser.add_argument("--backend", choices=sorted(RUNNERS), default="blackjax")
    calib_parser.add_argument("--n_trials", type=int, default=20)
    calib_parser.add_argument("--data_seed", type=int, default=0)
    calib_parser.add_argument("--output_file", type=str, help="Write the per-trial JSON here")
    _add_sampler_arguments(calib_parser)

    # --- PLOT Command ---
    plot_parser = subparsers.add_parser("plot", help="Generate Plots")
    plot_subparsers = plot_parser.add_subparsers(dest="plot_type", required=True)
    trace_parser = plot_subparsers.add_parser(
        "trace", parents=[common], help="Plot Trace and Diagnostics"
    )
    trace_parser.add_argument(
        "--file_path", type=str, required=True, help="Path to posterior.nc"
    )
    trace_parser.add_argument("--output_dir", type=str)

    return parser


def _run(args, experiment_config) -> int:
    experiment = prepare(experiment_config, data_seed=args.data_seed)
    run_experiment(
        experiment,
        backends=args.backends,
        sampler_overrides=_sampler_overrides(args),
        output_dir=args.output_dir,
    )
    print(experiment.report())
    if args.output_dir:
        save_report(experiment, args.output_dir)
    return 0 if all(r.ok for r in experiment.results) else 1


def _calibrate(args, experiment_config) -> int:
    sampler_config = experiment_config.sampler_config(args.backend)
    overrides = _sampler_overrides(args)
    if overrides:
        sampler_config = replace(sampler_config, **overrides)

    report = calibration_check(
        experiment_config,
        args.backend,
        n_trials=args.n_trials,
        seed=args.data_seed,
        sampler_config=sampler_config,
    )
    print(
        f"{report.backend}: {report.n_recovered}/{report.n_trials} trials recovered "
        f"(coverage {report.coverage:.2%}, {report.n_failed} failed)"
    )
    if args.output_file:
        with open(args.output_file, "w") as f:
            json.dump(
                {
                    "backend": report.backend,
                    "n_trials": report.n_trials,
                    "n_recovered": report.n_recovered,
                    "n_failed": report.n_failed,
                    "coverage": report.coverage,
                    "trials": report.trials,
                },
                f,
                indent=2,
            )
    return 0


def _plot_trace(args, experiment_config) -> int:
    inference_data = az.from_netcdf(args.file_path)
    backend = str(inference_data.attrs.get("inference_library", "unknown"))
    result = from_inference_data(inference_data, backend)
    print(az.summary(inference_data))

    output_dir = args.output_dir or os.path.join(
        os.path.dirname(os.path.abspath(args.file_path)), "diagnostics"
    )
    os.makedirs(output_dir, exist_ok=True)

    true_values = dict(
        zip(experiment_config.parameter_names, experiment_config.true_params)
    )
    axes = plot_posterior_chains_with_priors(
        result, build_priors(experiment_config), true_values=true_values
    )
    axes[0, 0].figure.savefig(os.path.join(output_dir, "trace_plot.png"))
    plt.close(axes[0, 0].figure)

    az.plot_autocorr(inference_data)
    plt.savefig(os.path.join(output_dir, "autocorr_plot.png"))
    plt.close()

    az.plot_ess(inference_data)
    plt.savefig(os.path.join(output_dir, "ess_plot.png"))
    plt.close()

    print(f"Plots saved to {output_dir}")
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level, log_file=args.log_file)
    experiment_config = load_experiment_config(args.config)

    if args.command == "run":
        return _run(args, experiment_config)
    elif args.command == "calibrate":
        return _calibrate(args, experiment_config)
    elif args.command == "plot":
        if args.plot_type == "trace":
            return _plot_trace(args, experiment_config)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
