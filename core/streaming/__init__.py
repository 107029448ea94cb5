"""Streaming module namespace.

Submodules are not imported eagerly so the in-memory transport stays
usable without touching aiokafka. Import components directly, e.g.:
  - core.streaming.memory_bus import InMemoryMessageBus
  - core.streaming.redpanda_bus import RedpandaMessageBus
"""

__all__ = []
