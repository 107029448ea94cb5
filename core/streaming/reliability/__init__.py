"""Reliability components for streaming services.

Delivery semantics wrapped around a subscription's handler: retry with
backoff, dead-lettering and per-message acknowledgement.
"""

from .reliability_layer import ReliabilityLayer

__all__ = ['ReliabilityLayer']
