import os
from bisect import bisect_left
from dataclasses import dataclass
from typing import Iterable, Tuple

import numpy as np
import pandas as pd

from bamsort import logger
from bamsort.config import BOUNDARY_COLUMN, PARTITION_FILE_PREFIX


@dataclass(frozen=True)
class BoundarySet:
    """
    P-1 non-decreasing keys splitting the key space into P ranges:
    (-inf, b0], (b0, b1], ..., (b[P-2], +inf).
    """
    keys: Tuple[int, ...] = ()

    def __post_init__(self):
        keys = tuple(int(k) for k in self.keys)
        for left, right in zip(keys, keys[1:]):
            if left > right:
                raise ValueError(f"boundaries must be non-decreasing, got {left} > {right}")
        object.__setattr__(self, "keys", keys)

    @property
    def num_partitions(self) -> int:
        return len(self.keys) + 1

    def partition(self, key: int) -> int:
        # keys equal to a boundary land in the lower partition
        return bisect_left(self.keys, key)


def partition_file_name(input_name: str) -> str:
    return PARTITION_FILE_PREFIX + input_name


def build_boundaries(samples: Iterable[int], num_partitions: int) -> BoundarySet:
    """
    Choose num_partitions - 1 boundaries at evenly spaced ranks of the
    sorted sample.

    A rank never moves below the previous boundary's rank, and a value
    equal to the previous boundary advances past its run while samples
    remain; once the sample is exhausted duplicates are kept.
    """
    if num_partitions <= 1:
        return BoundarySet()

    keys = np.sort(np.fromiter(samples, dtype=np.int64))
    if keys.size == 0:
        logger.warning("Empty sample; using {} zero boundaries".format(num_partitions - 1))
        return BoundarySet((0,) * (num_partitions - 1))

    last_index = keys.size - 1
    step = keys.size / num_partitions
    boundaries = []
    last = -1
    for i in range(1, num_partitions):
        k = min(int(np.floor(step * i + 0.5)), last_index)
        if last >= 0:
            k = max(k, last)
            while k < last_index and keys[k] == keys[last]:
                k += 1
        boundaries.append(int(keys[k]))
        last = k

    return BoundarySet(tuple(boundaries))


def write_partition_file(boundaries: BoundarySet, path: str) -> None:
    """Publish the boundaries; readers only ever see a complete file."""
    tmp_path = f"{path}.tmp-{os.getpid()}"
    df = pd.DataFrame({BOUNDARY_COLUMN: list(boundaries.keys)}, dtype="int64")
    try:
        df.to_csv(tmp_path, index=False)
        os.replace(tmp_path, path)
    except OSError:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    logger.info("Partition file written to {}: {}".format(path, list(boundaries.keys)))


def read_partition_file(path: str) -> BoundarySet:
    df = pd.read_csv(path, dtype={BOUNDARY_COLUMN: "int64"})
    return BoundarySet(tuple(df[BOUNDARY_COLUMN].tolist()))
