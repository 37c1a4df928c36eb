"""Synthetic data module: vector helpers and non-IID client assignment."""

from .vector_math import dot, magnitude, standard_normal, standard_normal_vector
from .partitioner import (
    BENIGN,
    MALICIOUS,
    CLIENT_TYPES,
    COLLUSION_DISTRIBUTION,
    NonIIDPartitioner,
    count_malicious,
)

__all__ = [
    "dot",
    "magnitude",
    "standard_normal",
    "standard_normal_vector",
    "BENIGN",
    "MALICIOUS",
    "CLIENT_TYPES",
    "COLLUSION_DISTRIBUTION",
    "NonIIDPartitioner",
    "count_malicious",
]
