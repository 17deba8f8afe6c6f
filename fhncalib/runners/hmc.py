from typing import Any, Dict

import blackjax

from fhncalib.runners.blackjax import BlackjaxRunner

EXCLUSION_NOTE = (
    "Static-trajectory HMC (fixed number of leapfrog steps, no U-turn criterion) "
    "does not converge reliably on this model. It is kept for comparison only; "
    "the root cause (divergence vs. poor mixing) has not been pinned down."
)


class StaticHMCRunner(BlackjaxRunner):
    """Plain HMC with a fixed trajectory length. Excluded from the default comparison."""

    backend_name = "hmc"
    algorithm_name = "hmc"

    def kernel_kwargs(self) -> Dict[str, Any]:
        return {"num_integration_steps": self.sampler_config.num_integration_steps}

    @property
    def algorithm(self):
        return blackjax.hmc
