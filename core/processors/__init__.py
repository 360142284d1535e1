"""
Challenge Core Processors

Public exports for request fingerprint analysis.
"""

from core.processors.fingerprint import FingerprintAnalyzer, SIGNAL_WEIGHTS

__all__ = [
    "FingerprintAnalyzer",
    "SIGNAL_WEIGHTS",
]
