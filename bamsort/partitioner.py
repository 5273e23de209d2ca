from typing import Callable

from bamsort.boundaries import BoundarySet
from bamsort.config import CAPACITY_FRACTION


def partition(key: int, boundaries: BoundarySet) -> int:
    """Index of the first boundary >= key, or P-1 past the last one."""
    return boundaries.partition(key)


def resolve_num_partitions(capacity: int) -> int:
    numerator, denominator = CAPACITY_FRACTION
    return max(1, capacity * numerator // denominator)


def spark_capacity(sc) -> Callable[[], int]:
    return lambda: sc.defaultParallelism


class RangePartitioner:
    """
    Partition function handed to Spark's shuffle.

    ``boundaries`` is a broadcast variable (anything with a ``value``
    holding a BoundarySet), so each job routes with the set computed for
    it. Spark reduces the returned index modulo the partition count, so a
    set built for a different count is refused instead of wrapping keys
    around.
    """

    def __init__(self, boundaries, num_partitions: int):
        self._boundaries = boundaries
        self.num_partitions = num_partitions

    @property
    def boundaries(self) -> BoundarySet:
        boundaries = self._boundaries.value
        if boundaries.num_partitions != self.num_partitions:
            raise ValueError(
                f"boundary set has {boundaries.num_partitions} partitions, "
                f"the shuffle has {self.num_partitions}")
        return boundaries

    def __call__(self, key: int) -> int:
        return partition(key, self.boundaries)
