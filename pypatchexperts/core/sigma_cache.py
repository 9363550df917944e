"""
Thread-safe cache of CCNF Sigma matrices.

Sigma only depends on an expert's trained parameters and the window size, so it
is computed once per (expert, window size) and shared by every later call.
"""

import logging
import threading

logger = logging.getLogger(__name__)


def _compute_sigma(expert, sigma_components, window_size):
    return expert.compute_sigma(sigma_components, window_size)


class SigmaCache:
    """
    Compute-or-fetch store keyed by (expert identity, window size).

    Args:
        compute: Callable (expert, sigma_components, window_size) -> matrix;
            defaults to expert.compute_sigma
    """

    def __init__(self, compute=None):
        self._compute = compute or _compute_sigma
        self._sigmas = {}
        self._key_locks = {}
        self._lock = threading.Lock()

    def get(self, expert, window_size: int, sigma_components):
        key = (id(expert), window_size)

        sigma = self._sigmas.get(key)
        if sigma is not None:
            return sigma[1]

        with self._lock:
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        with key_lock:
            # Another thread may have finished while we waited
            sigma = self._sigmas.get(key)
            if sigma is None:
                logger.debug(f"Computing Sigma for window size {window_size}")
                # Keep the expert alive so its id cannot be reused by another object
                sigma = (expert, self._compute(expert, sigma_components, window_size))
                self._sigmas[key] = sigma
        return sigma[1]

    def __contains__(self, key):
        expert, window_size = key
        return (id(expert), window_size) in self._sigmas

    def __len__(self):
        return len(self._sigmas)

    def clear(self):
        with self._lock:
            self._sigmas.clear()
            self._key_locks.clear()
