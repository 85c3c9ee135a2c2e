"""Cached factorial and binomial helpers used by the distribution builders."""

from __future__ import annotations

import functools
import math

import numpy as np

__all__ = ["factorial", "log_factorial", "log_factorials", "binomial", "log_binomial"]


@functools.lru_cache(maxsize=None)
def factorial(n: int) -> int:
    if n < 0:
        raise ValueError("factorial is undefined for negative integers")
    return math.factorial(n)


@functools.lru_cache(maxsize=None)
def log_factorial(n: int) -> float:
    if n < 0:
        raise ValueError("log_factorial is undefined for negative integers")
    return math.lgamma(n + 1.0)


@functools.lru_cache(maxsize=64)
def _log_factorial_table(size: int) -> np.ndarray:
    table = np.array([log_factorial(k) for k in range(size + 1)], dtype=float)
    table.setflags(write=False)
    return table


def log_factorials(max_n: int) -> np.ndarray:
    """Return ``ln k!`` for ``k = 0..max_n`` as a read-only array."""

    if max_n < 0:
        raise ValueError("max_n must be non-negative")
    return _log_factorial_table(int(max_n))


@functools.lru_cache(maxsize=None)
def binomial(n: int, k: int) -> int:
    if k < 0 or k > n:
        return 0
    return math.comb(n, k)


def log_binomial(n: int, k: int) -> float:
    if k < 0 or k > n:
        return float("-inf")
    return log_factorial(n) - log_factorial(k) - log_factorial(n - k)
