"""
Challenge Core Models

Threshold policy for challenge decisions.
"""

from core.models.policy import ChallengePolicyEngine

__all__ = [
    "ChallengePolicyEngine",
]
