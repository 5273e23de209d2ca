import os
from contextlib import contextmanager
from typing import Iterator, NamedTuple, Optional

import pysam

from bamsort import logger
from bamsort.config import SHARD_EXTENSION, TEMPORARY_DIR
from bamsort.records import read_header


class SortJobConf(NamedTuple):
    """What every output task needs: where the header lives and how to name shards."""
    input_path: str
    output_name: str


class SortTaskState:
    """
    State scoped to one output task.

    The header is resolved from the original input the first time it is
    asked for and reused for the rest of the task.
    """

    def __init__(self, conf: SortJobConf, partition: int, attempt: int = 0):
        self.conf = conf
        self.partition = partition
        self.attempt = attempt
        self.header: Optional[pysam.AlignmentHeader] = None

    def get_header(self) -> pysam.AlignmentHeader:
        if self.header is None:
            self.header = read_header(self.conf.input_path)
        return self.header


def shard_name(output_name: str, partition: int, extension: str = SHARD_EXTENSION) -> str:
    """Zero-padded so that name order equals partition order."""
    return f"{output_name}-{partition:06d}{extension}"


def combine_outputs(work_dir: str, output_name: str, output_file: str) -> None:
    raise NotImplementedError("combining (-o) not yet implemented!")


class ShardRecordWriter:

    def __init__(self, bam: pysam.AlignmentFile, header: pysam.AlignmentHeader):
        self._bam = bam
        self._header = header
        self.count = 0

    def write(self, record: str) -> None:
        self._bam.write(pysam.AlignedSegment.fromstring(record, self._header))
        self.count += 1


class SortOutputFormat:
    """
    Writes one partition's shard: the input's header followed by the
    partition's records in the order they are written.
    """

    def __init__(self, work_dir: str, state: SortTaskState, extension: str = SHARD_EXTENSION):
        self.work_dir = work_dir
        self.state = state
        self.extension = extension

    def check_output_specs(self) -> None:
        # An existing WORKDIR is fine: sort runs may share it.
        os.makedirs(self.work_dir, exist_ok=True)

    def commit_job(self) -> None:
        """Remove the temporary area once no task attempt is left in it."""
        temporary = os.path.join(self.work_dir, TEMPORARY_DIR)
        if os.path.isdir(temporary) and not os.listdir(temporary):
            os.rmdir(temporary)

    def output_path(self) -> str:
        name = shard_name(self.state.conf.output_name, self.state.partition, self.extension)
        return os.path.join(self.work_dir, name)

    def default_work_file(self) -> str:
        attempt = f"attempt_{self.state.partition:06d}_{self.state.attempt}"
        return os.path.join(self.work_dir, TEMPORARY_DIR, attempt,
                            os.path.basename(self.output_path()))

    @contextmanager
    def record_writer(self) -> Iterator[ShardRecordWriter]:
        header = self.state.get_header()
        work_file = self.default_work_file()
        os.makedirs(os.path.dirname(work_file), exist_ok=True)

        try:
            with pysam.AlignmentFile(work_file, "wb", header=header) as bam:
                writer = ShardRecordWriter(bam, header)
                yield writer
        except BaseException:
            if os.path.exists(work_file):
                os.remove(work_file)
            os.rmdir(os.path.dirname(work_file))
            raise

        final = self.output_path()
        os.replace(work_file, final)
        os.rmdir(os.path.dirname(work_file))
        logger.info("partition {}: {} records -> {}"
                    .format(self.state.partition, writer.count, final))
