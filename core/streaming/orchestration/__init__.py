"""Per-partition worker orchestration for consumed streams."""

from .partition_dispatcher import PartitionDispatcher

__all__ = ['PartitionDispatcher']
