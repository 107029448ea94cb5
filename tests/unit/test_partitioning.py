import pytest

from core.streaming.partitioning import PartitionSelector, partitions_for_instance, select_partition
from core.utils.exceptions import InvalidConfigurationError


@pytest.mark.parametrize("key,count,expected", [
    (0, 2, 0),
    (3, 2, 1),
    (4, 2, 0),
    (9, 3, 0),
    (10, 3, 1),
    (7, 1, 0),
    (10**12 + 5, 4, 1),
])
def test_select_partition_is_key_mod_count(key, count, expected):
    assert select_partition(key, count) == expected


def test_select_partition_stays_in_range():
    for count in range(1, 9):
        for key in range(0, 100):
            result = select_partition(key, count)
            assert 0 <= result < count
            assert result == key % count


@pytest.mark.parametrize("count", [0, -1, -10])
def test_non_positive_partition_count_rejected(count):
    with pytest.raises(InvalidConfigurationError) as exc:
        select_partition(3, count)
    assert exc.value.config_field == "partitioning.partition_count"
    assert exc.value.config_value == count


@pytest.mark.parametrize("count", [2.0, "2", True, None])
def test_non_integer_partition_count_rejected(count):
    with pytest.raises(InvalidConfigurationError):
        select_partition(3, count)


def test_negative_key_rejected():
    with pytest.raises(ValueError):
        select_partition(-1, 2)


def test_non_integer_key_rejected():
    with pytest.raises(TypeError):
        select_partition("3", 2)


def test_selector_validates_at_construction():
    with pytest.raises(InvalidConfigurationError):
        PartitionSelector(0)

    selector = PartitionSelector(2)
    assert selector.select(3) == 1
    assert selector.select(3) == selector.select(3)


def test_partitions_for_single_instance_owns_everything():
    assert partitions_for_instance(4, 0, 1) == [0, 1, 2, 3]


def test_partitions_for_instances_cover_each_partition_once():
    count, instances = 5, 2
    owned = [partitions_for_instance(count, i, instances) for i in range(instances)]
    assert owned == [[0, 2, 4], [1, 3]]
    flat = sorted(p for partitions in owned for p in partitions)
    assert flat == list(range(count))


def test_more_instances_than_partitions_leaves_some_idle():
    assert partitions_for_instance(2, 3, 4) == []


@pytest.mark.parametrize("index,count", [(1, 1), (-1, 2), (0, 0), (0, -1)])
def test_partitions_for_instance_rejects_bad_assignment(index, count):
    with pytest.raises(InvalidConfigurationError):
        partitions_for_instance(2, index, count)
