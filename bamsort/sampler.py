from typing import Callable, Iterable, List, Optional, Sequence

import numpy as np

from bamsort import logger
from bamsort.config import MAX_SPLITS_SAMPLED, NUM_SAMPLES, SAMPLE_PROBABILITY
from bamsort.records import BamSplit, read_split_keys


def choose_splits(splits: Sequence[BamSplit], max_splits: int) -> List[BamSplit]:
    """Pick up to max_splits splits at evenly spaced positions."""
    count = min(max_splits, len(splits))
    if count <= 0:
        return []
    step = len(splits) / count
    return [splits[int(i * step)] for i in range(count)]


class RandomSampler:
    """
    Sample sort keys from a bounded number of splits.

    Each record is kept independently with probability ``probability``;
    sampling stops once ``num_samples`` keys are held.
    """

    def __init__(
        self,
        probability: float = SAMPLE_PROBABILITY,
        num_samples: int = NUM_SAMPLES,
        max_splits_sampled: int = MAX_SPLITS_SAMPLED,
        seed: Optional[int] = None,
    ):
        if not 0.0 < probability <= 1.0:
            raise ValueError(f"sampling probability must be in (0, 1], got {probability}")
        if num_samples < 1:
            raise ValueError(f"sample count must be positive, got {num_samples}")
        if max_splits_sampled < 1:
            raise ValueError(f"max splits sampled must be positive, got {max_splits_sampled}")
        self.probability = probability
        self.num_samples = num_samples
        self.max_splits_sampled = max_splits_sampled
        self.seed = seed

    def get_sample(
        self,
        splits: Sequence[BamSplit],
        read_keys: Callable[[BamSplit], Iterable[int]] = read_split_keys,
    ) -> List[int]:
        rng = np.random.default_rng(self.seed)
        chosen = choose_splits(splits, self.max_splits_sampled)

        samples = []
        for split in chosen:
            for key in read_keys(split):
                if rng.random() < self.probability:
                    samples.append(key)
                    if len(samples) >= self.num_samples:
                        logger.info("Sample cap of {} reached".format(self.num_samples))
                        return samples

        logger.info("Sampled {} keys from {} of {} splits"
                    .format(len(samples), len(chosen), len(splits)))
        return samples
