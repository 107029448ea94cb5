"""Partition selection for keyed streams.

``key mod partition_count`` routing: every message carrying the same key
lands on the same partition, which is what gives per-account ordering.
The mapping is a plain modulo and is not uniform when keys are few or
clustered relative to the partition count; that is accepted, not corrected.
"""

from typing import List

from core.utils.exceptions import InvalidConfigurationError


def _check_partition_count(partition_count) -> None:
    if isinstance(partition_count, bool) or not isinstance(partition_count, int) or partition_count <= 0:
        raise InvalidConfigurationError(
            f"partition_count must be a positive integer, got {partition_count!r}",
            config_field="partitioning.partition_count",
            config_value=partition_count,
        )


def select_partition(key: int, partition_count: int) -> int:
    """Map a non-negative integer key to a partition index in [0, partition_count)."""
    _check_partition_count(partition_count)
    if isinstance(key, bool) or not isinstance(key, int):
        raise TypeError(f"partition key must be an int, got {type(key).__name__}")
    if key < 0:
        raise ValueError(f"partition key must be non-negative, got {key}")
    return key % partition_count


class PartitionSelector:
    """Partition selection strategy bound to one stream's partition count."""

    def __init__(self, partition_count: int):
        _check_partition_count(partition_count)
        self.partition_count = partition_count

    def select(self, key: int) -> int:
        return select_partition(key, self.partition_count)

    def __repr__(self) -> str:
        return f"PartitionSelector(partition_count={self.partition_count})"


def partitions_for_instance(partition_count: int, instance_index: int, instance_count: int) -> List[int]:
    """Static partition ownership for one consumer instance.

    Instance ``i`` of ``n`` owns every partition ``p`` with ``p % n == i``;
    together the instances cover each partition exactly once.
    """
    _check_partition_count(partition_count)
    if isinstance(instance_count, bool) or not isinstance(instance_count, int) or instance_count <= 0:
        raise InvalidConfigurationError(
            f"instance_count must be a positive integer, got {instance_count!r}",
            config_field="executor.instance_count",
            config_value=instance_count,
        )
    if not isinstance(instance_index, int) or not 0 <= instance_index < instance_count:
        raise InvalidConfigurationError(
            f"instance_index must be in [0, {instance_count}), got {instance_index!r}",
            config_field="executor.instance_index",
            config_value=instance_index,
        )
    return [p for p in range(partition_count) if p % instance_count == instance_index]
