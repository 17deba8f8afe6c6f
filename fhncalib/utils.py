import importlib.metadata
import importlib.util
from types import ModuleType
from typing import Dict, Iterable, Optional

from fhncalib.config_schema import ExperimentConfig

LIBRARIES = ("jax", "diffrax", "blackjax", "mici", "numpyro", "arviz", "numpy")


def load_config_from_path(path) -> ModuleType:
    """Dynamically loads a config module from a given path."""
    spec = importlib.util.spec_from_file_location("config", path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Could not load config module from '{path}'")
    config = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(config)
    return config


def load_experiment_config(path: Optional[str] = None) -> ExperimentConfig:
    """Return the `experiment_config` of a config module, or the default experiment."""
    if path is None:
        from fhncalib.configs.fitzhugh_nagumo import experiment_config

        return experiment_config
    module = load_config_from_path(path)
    if not hasattr(module, "experiment_config"):
        raise AttributeError(f"Config module '{path}' defines no experiment_config")
    return module.experiment_config


def get_library_versions(libraries: Iterable[str] = LIBRARIES) -> Dict[str, str]:
    versions = {}
    for lib in libraries:
        try:
            versions[lib] = importlib.metadata.version(lib)
        except importlib.metadata.PackageNotFoundError:
            versions[lib] = None
    return versions
