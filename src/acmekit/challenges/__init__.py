"""ACME challenge proofs and resolver interface."""

from acmekit.challenges.base import ChallengeProof, ChallengeResolver, compute_key_authorization
from acmekit.challenges.dns01 import compute_dns_txt_value

__all__ = [
    "ChallengeProof",
    "ChallengeResolver",
    "compute_key_authorization",
    "compute_dns_txt_value",
]
