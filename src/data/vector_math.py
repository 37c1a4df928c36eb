"""Vector helpers for simulated gradient and importance profiles."""

import math

import numpy as np


def dot(a: np.ndarray, b: np.ndarray) -> float:
    """Compute the dot product of two equal-length vectors.

    Args:
        a: First vector.
        b: Second vector.

    Returns:
        Sum of element-wise products.

    Raises:
        ValueError: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise ValueError(f"Vector lengths differ: {len(a)} vs {len(b)}")
    return float(np.dot(a, b))


def magnitude(a: np.ndarray) -> float:
    """Compute the Euclidean norm of a vector."""
    return float(np.sqrt(np.sum(np.square(a))))


def standard_normal(rng: np.random.Generator) -> float:
    """Draw one standard-normal sample with the Box-Muller transform.

    Both uniform draws are redrawn while they are exactly zero so the
    logarithm stays finite.

    Args:
        rng: Random generator supplying uniform(0, 1) draws.

    Returns:
        A sample from N(0, 1).
    """
    u = 0.0
    v = 0.0
    while u == 0.0:
        u = rng.random()
    while v == 0.0:
        v = rng.random()
    return math.sqrt(-2.0 * math.log(u)) * math.cos(2.0 * math.pi * v)


def standard_normal_vector(rng: np.random.Generator, size: int) -> np.ndarray:
    """Draw ``size`` successive Box-Muller samples.

    Args:
        rng: Random generator.
        size: Number of samples.

    Returns:
        Array of shape [size].
    """
    return np.array([standard_normal(rng) for _ in range(size)], dtype=np.float64)
