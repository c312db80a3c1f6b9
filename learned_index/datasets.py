"""Synthetic key distributions for examples, benchmarks and tests."""
from typing import Optional

import numpy as np


class DatasetGenerator:
    """Generates sorted float64 key arrays with different CDF shapes."""

    @staticmethod
    def generate_sequential(n: int, start: float = 0.0, step: float = 1.0) -> np.ndarray:
        return start + step * np.arange(n, dtype=np.float64)

    @staticmethod
    def generate_uniform(n: int, low: float = 0.0, high: float = 1_000_000.0,
                         seed: Optional[int] = 42) -> np.ndarray:
        rng = np.random.default_rng(seed)
        return np.sort(rng.uniform(low, high, n))

    @staticmethod
    def generate_lognormal(n: int, mean: float = 0.0, sigma: float = 2.0, scale: float = 1_000.0,
                           seed: Optional[int] = 42) -> np.ndarray:
        rng = np.random.default_rng(seed)
        return np.sort(rng.lognormal(mean, sigma, n) * scale)

    @staticmethod
    def generate_mixed(n: int, seed: Optional[int] = 42) -> np.ndarray:
        """Half uniform, half clustered around a few hot spots."""
        rng = np.random.default_rng(seed)
        uniform = rng.uniform(0, 1_000_000, n // 2)
        centers = rng.uniform(0, 1_000_000, 8)
        clustered = rng.normal(rng.choice(centers, n - n // 2), 1_000.0)
        return np.sort(np.concatenate([uniform, clustered]))
