import os
from functools import partial
from typing import Callable, Iterator, List, Optional, Tuple

import pandas as pd
from py4j.protocol import Py4JJavaError
from pyspark import TaskContext

from bamsort import logger
from bamsort.boundaries import build_boundaries, partition_file_name, write_partition_file
from bamsort.config import (
    MAX_SPLITS_SAMPLED,
    NUM_SAMPLES,
    SAMPLE_PROBABILITY,
    SPLIT_SIZE,
)
from bamsort.output import SortJobConf, SortOutputFormat, SortTaskState, combine_outputs
from bamsort.partitioner import RangePartitioner, resolve_num_partitions, spark_capacity
from bamsort.records import compute_splits, keyed_records
from bamsort.reducer import identity_reduce
from bamsort.sampler import RandomSampler
from bamsort.timer import Timer

SHARD_COLUMNS = ["partition", "path", "records"]


class JobFailedError(RuntimeError):
    """The distributed sort job did not complete."""


def write_partition(
    conf: SortJobConf, work_dir: str, index: int, pairs: Iterator[Tuple[int, str]]
) -> Iterator[Tuple[int, str, int]]:
    """Output stage for one partition: drop keys and write the shard."""
    context = TaskContext.get()
    attempt = context.attemptNumber() if context is not None else 0

    output = SortOutputFormat(work_dir, SortTaskState(conf, index, attempt))
    with output.record_writer() as writer:
        for record in identity_reduce(pairs):
            writer.write(record)
    yield index, output.output_path(), writer.count


def partition_file_path(input_path: str, input_name: str) -> str:
    """The partition file sits next to the input."""
    input_dir = os.path.dirname(os.path.abspath(input_path))
    return os.path.join(input_dir, partition_file_name(input_name))


def run_sort(
    spark,
    work_dir: str,
    input_path: str,
    output_file: Optional[str] = None,
    capacity: Optional[Callable[[], int]] = None,
    probability: float = SAMPLE_PROBABILITY,
    num_samples: int = NUM_SAMPLES,
    max_splits_sampled: int = MAX_SPLITS_SAMPLED,
    split_size: int = SPLIT_SIZE,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """
    Sort INPATH into one shard per partition under WORKDIR.

    Returns one row per shard (partition, path, records), in partition order.
    """
    input_name = os.path.basename(input_path)
    if output_file is not None:
        combine_outputs(work_dir, input_name, output_file)

    sc = spark.sparkContext
    conf = SortJobConf(input_path=os.path.abspath(input_path), output_name=input_name)

    sampler = RandomSampler(probability, num_samples, max_splits_sampled, seed)
    splits = compute_splits(conf.input_path, split_size)

    if capacity is None:
        capacity = spark_capacity(sc)
    num_partitions = resolve_num_partitions(capacity())
    logger.info("Sorting {} into {} partitions".format(input_path, num_partitions))

    print("sort :: Sampling...")
    timer = Timer()
    timer.start()

    samples = sampler.get_sample(splits)
    boundaries = build_boundaries(samples, num_partitions)
    write_partition_file(boundaries, partition_file_path(conf.input_path, input_name))
    boundaries_broadcast = sc.broadcast(boundaries)

    print(f"sort :: Sampling complete in {timer.stop_s()}.{timer.fms():03d} s.")

    output = SortOutputFormat(work_dir, SortTaskState(conf, 0))
    output.check_output_specs()

    timer.start()
    try:
        rows: List[Tuple[int, str, int]] = (
            sc.parallelize(splits, len(splits))
            .flatMap(keyed_records)
            .repartitionAndSortWithinPartitions(
                num_partitions, RangePartitioner(boundaries_broadcast, num_partitions))
            .mapPartitionsWithIndex(partial(write_partition, conf, work_dir))
            .collect()
        )
    except Py4JJavaError as e:
        raise JobFailedError(f"sort job failed: {e.java_exception}") from e
    finally:
        boundaries_broadcast.unpersist()

    output.commit_job()
    print(f"sort :: Sorting complete in {timer.stop_s()}.{timer.fms():03d} s.")

    shards = pd.DataFrame(rows, columns=SHARD_COLUMNS)
    return shards.sort_values("partition").reset_index(drop=True)
