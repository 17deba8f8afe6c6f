import logging
import sys
from typing import Any, Dict

logger = logging.getLogger(__name__)


def detect_free_threading() -> bool:
    """Detect if the current Python build runs without the GIL.
    Returns:
        bool: True if free-threading is detected, False otherwise.
    """
    return "free-threading" in sys.version


def process_workers(n_processes: int) -> Dict[str, Any]:
    """Keyword arguments for mici's `sample_chains` to spread chains over workers.

    Threads are enough on a free-threaded build; otherwise chains go to
    separate processes. A single worker runs the chains in-process.
    """
    if n_processes <= 1:
        return {}
    if detect_free_threading():
        logger.info("Free-threaded Python: running chains on %d threads", n_processes)
        return {
            "use_thread_pool": True,
            "n_worker": n_processes,
        }
    logger.info("Running chains on %d processes", n_processes)
    return {
        "n_process": n_processes,
    }
