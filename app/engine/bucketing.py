"""Deterministic subject bucketing.

A subject's bucket is derived from a stable 64-bit hash of the subject key
and the experiment key, so the same pair always lands in the same place and
a subject's position in one experiment says nothing about its position in
another. No randomness and no stored lookup table.
"""

import hashlib
import math

from app.core.errors import ConfigurationError

KEY_SEPARATOR = "::"
HASH_SPACE = 2**64


def bucket(subject_key: str, experiment_key: str) -> float:
    """Map a (subject, experiment) pair to a uniform value in [0.0, 1.0).

    Uses an 8-byte BLAKE2b digest of ``subject_key::experiment_key`` read as
    an unsigned big-endian integer and normalized by the hash space.
    """
    hash_input = f"{subject_key}{KEY_SEPARATOR}{experiment_key}".encode("utf-8")
    digest = hashlib.blake2b(hash_input, digest_size=8).digest()
    return int.from_bytes(digest, "big") / HASH_SPACE


def choose_variant(value: float, variant_count: int) -> int:
    """Pick the index of the equal-width interval of [0, 1) holding ``value``."""
    if variant_count <= 0:
        raise ConfigurationError(f"variant_count must be positive, got {variant_count}")
    # bucket() and the resolver's v / sampling (with v < sampling) never reach
    # 1.0 under IEEE division, so only a direct caller can trip this.
    if not 0.0 <= value < 1.0:
        raise ConfigurationError(f"bucket value must be in [0, 1), got {value}")

    # min() guards against float rounding right below 1.0
    return min(math.floor(value * variant_count), variant_count - 1)
