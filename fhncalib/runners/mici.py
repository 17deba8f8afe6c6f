"""Out-of-process mici sampler.

The parent marshals the problem into a flat JSON payload, launches
`python -m fhncalib.runners.mici_worker <payload.json> <posterior.nc>` and
reads the posterior back from the NetCDF file the worker writes. Nothing but
the payload crosses the process boundary.

Payload schema (version 1):

    schema_version   int
    model            registered vector field name (see model.VECTOR_FIELDS)
    initial_state    [float, ...]
    tspan            [t0, t1]
    parameter_names  structural parameter names, in vector-field order
    priors           prior records (name, family, bounds/shape parameters)
    times            [float, ...]
    data             flat row-major list of floats
    data_shape       [n_states, n_times]
    sampler          SamplerConfig fields
    solver           SolverConfig fields
"""

import json
import logging
import os
import subprocess
import sys
import tempfile
from dataclasses import asdict
from typing import Any, Dict, Optional, Tuple

import arviz
import numpy as np

from fhncalib.config_schema import SamplerConfig, SolverConfig
from fhncalib.datahandler import from_inference_data
from fhncalib.logging_utils import current_level_name
from fhncalib.model import ODEProblem, VECTOR_FIELDS, vector_field_name
from fhncalib.priors import (
    INVERSE_GAMMA,
    PriorSet,
    prior_from_record,
    prior_to_record,
)
from fhncalib.runners.base import BackendError, BaseRunner

logger = logging.getLogger(__name__)

PAYLOAD_SCHEMA_VERSION = 1
WORKER_MODULE = "fhncalib.runners.mici_worker"

_REQUIRED_KEYS = (
    "schema_version",
    "model",
    "initial_state",
    "tspan",
    "parameter_names",
    "priors",
    "times",
    "data",
    "data_shape",
    "sampler",
    "solver",
)


def build_payload(
    problem: ODEProblem,
    times,
    data,
    priors: PriorSet,
    sampler_config: SamplerConfig,
    solver_config: SolverConfig,
) -> Dict[str, Any]:
    data = np.asarray(data, dtype=np.float64)
    return {
        "schema_version": PAYLOAD_SCHEMA_VERSION,
        "model": vector_field_name(problem.vector_field),
        "initial_state": [float(x) for x in problem.u0],
        "tspan": [float(t) for t in problem.tspan],
        "parameter_names": priors.structural_names,
        "priors": [prior_to_record(p) for p in priors.all],
        "times": np.asarray(times, dtype=np.float64).tolist(),
        "data": data.ravel().tolist(),
        "data_shape": list(data.shape),
        "sampler": asdict(sampler_config),
        "solver": asdict(solver_config),
    }


def parse_payload(
    payload: Dict[str, Any],
) -> Tuple[ODEProblem, np.ndarray, np.ndarray, PriorSet, SamplerConfig, SolverConfig]:
    """Inverse of `build_payload`; validates the schema.

    Raises:
        BackendError: On a missing key, unknown schema version or model, or
            inconsistent data shape.
    """
    missing = [k for k in _REQUIRED_KEYS if k not in payload]
    if missing:
        raise BackendError(f"Payload is missing keys: {missing}")
    if payload["schema_version"] != PAYLOAD_SCHEMA_VERSION:
        raise BackendError(
            f"Unsupported payload schema version {payload['schema_version']}"
        )
    if payload["model"] not in VECTOR_FIELDS:
        raise BackendError(f"Unknown model {payload['model']!r}")

    problem = ODEProblem(
        vector_field=VECTOR_FIELDS[payload["model"]],
        u0=tuple(payload["initial_state"]),
        tspan=tuple(payload["tspan"]),
    )
    times = np.asarray(payload["times"], dtype=np.float64)
    shape = tuple(payload["data_shape"])
    flat = np.asarray(payload["data"], dtype=np.float64)
    if flat.size != int(np.prod(shape)) or shape != (problem.n_states, times.size):
        raise BackendError(
            f"Data of size {flat.size} does not fit shape {shape} for "
            f"{problem.n_states} states at {times.size} times"
        )
    data = flat.reshape(shape)

    records = payload["priors"]
    by_name = {r["name"]: r for r in records}
    structural = [prior_from_record(by_name[name]) for name in payload["parameter_names"]]
    noise_records = [r for r in records if r["family"] == INVERSE_GAMMA]
    noise = prior_from_record(noise_records[0]) if noise_records else None
    priors = PriorSet(structural=structural, noise=noise)

    return (
        problem,
        times,
        data,
        priors,
        SamplerConfig(**payload["sampler"]),
        SolverConfig(**payload["solver"]),
    )


class MiciRunner(BaseRunner):
    """mici dynamic multinomial HMC, run in a separate Python process."""

    backend_name = "mici"
    algorithm_name = "DynamicMultinomialHMC"

    def __init__(self, *args, python_executable: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.python_executable = python_executable or sys.executable

    def _run(self) -> Dict[str, Any]:
        payload = build_payload(
            self.problem,
            self.times,
            self.data,
            self.priors,
            self.sampler_config,
            self.solver_config,
        )

        with tempfile.TemporaryDirectory(prefix="fhncalib-mici-") as tmp_dir:
            payload_path = os.path.join(tmp_dir, "payload.json")
            output_path = os.path.join(tmp_dir, "posterior.nc")
            with open(payload_path, "w") as f:
                json.dump(payload, f)

            cmd = [
                self.python_executable,
                "-m",
                WORKER_MODULE,
                payload_path,
                output_path,
                "--log_level",
                current_level_name(),
            ]
            logger.debug("Launching mici worker: %s", " ".join(cmd))
            proc = subprocess.run(cmd, capture_output=True, text=True)
            if proc.returncode != 0:
                stderr_tail = "\n".join(proc.stderr.strip().splitlines()[-20:])
                raise BackendError(
                    f"mici worker exited with code {proc.returncode}:\n{stderr_tail}"
                )
            if proc.stderr.strip():
                logger.debug("mici worker log:\n%s", proc.stderr.strip())
            if not os.path.exists(output_path):
                raise BackendError("mici worker finished without writing a posterior")

            inference_data = arviz.from_netcdf(output_path)
            worker_result = from_inference_data(inference_data, self.backend_name)
            attrs = dict(inference_data.attrs)

        algorithm_parameters = json.loads(attrs.get("algorithm_parameters", "{}"))
        samples = {name: worker_result.samples[name] for name in self.priors.names}

        return {
            "samples": samples,
            "diverging": worker_result.diverging,
            "algorithm_parameters": algorithm_parameters,
            "extra_mcmc_params": {
                "n_process": self.sampler_config.n_process,
                "worker_elapsed": worker_result.elapsed,
            },
        }
