import zlib
from typing import Iterator, List, NamedTuple, Optional, Tuple

import pysam

from bamsort import logger
from bamsort.bgzf import BgzfReader, find_record_start, split_virtual_offset
from bamsort.config import SPLIT_SIZE

# Unplaced reads sort after every placed read
UNPLACED_REFERENCE = 0x7fffffff


class BamSplit(NamedTuple):
    """A contiguous run of records between two BGZF virtual offsets.

    ``end`` is exclusive; ``None`` means the split runs to end of file.
    """
    path: str
    start: int
    end: Optional[int]


def open_alignments(path: str) -> pysam.AlignmentFile:
    return pysam.AlignmentFile(path, "rb", check_sq=False)


def read_header(path: str) -> pysam.AlignmentHeader:
    with open_alignments(path) as bam:
        return bam.header


def sort_key(read: pysam.AlignedSegment) -> int:
    """
    Derive the 64-bit ordering key of a record.

    Placed records order by (reference index, 0-based start). Everything
    else shares the top reference slot and orders by a crc32 of the read
    name, which is stable across processes unlike ``hash()``.
    """
    reference_id = read.reference_id
    start = read.reference_start
    if reference_id >= 0 and start >= 0:
        return reference_id << 32 | start

    name = read.query_name or ""
    return UNPLACED_REFERENCE << 32 | zlib.crc32(name.encode())


def compute_splits(path: str, split_size: int = SPLIT_SIZE) -> List[BamSplit]:
    """
    Cut the file every ``split_size`` compressed bytes and move each cut to
    the first record starting after it.

    Only block headers and a few records past each cut are read, so the cost
    grows with the number of splits rather than the number of records.
    """
    if split_size < 1:
        raise ValueError(f"split size must be positive, got {split_size}")

    with open_alignments(path) as bam:
        starts = [bam.tell()]
        num_references = bam.nreferences

    with open(path, "rb") as f:
        reader = BgzfReader(f)
        header_block, _ = split_virtual_offset(starts[0])
        cut = max(split_size, header_block + 1)
        while cut < reader.file_size:
            coffset = reader.find_block(cut)
            if coffset is None:
                break
            start = find_record_start(reader, coffset, num_references)
            if start is None:
                break
            if start > starts[-1]:
                starts.append(start)
            cut = max(cut + split_size, split_virtual_offset(start)[0] + 1)

    ends = starts[1:] + [None]
    splits = [BamSplit(path, start, end) for start, end in zip(starts, ends)]
    logger.info("{}: {} splits of about {} bytes".format(path, len(splits), split_size))
    return splits


def read_split(split: BamSplit) -> Iterator[pysam.AlignedSegment]:
    with open_alignments(split.path) as bam:
        bam.seek(split.start)
        while split.end is None or bam.tell() < split.end:
            try:
                read = next(bam)
            except StopIteration:
                return
            yield read


def read_split_keys(split: BamSplit) -> Iterator[int]:
    for read in read_split(split):
        yield sort_key(read)


def keyed_records(split: BamSplit) -> Iterator[Tuple[int, str]]:
    """Map stage: (sort key, SAM text) for every record of the split."""
    for read in read_split(split):
        yield sort_key(read), read.to_string()
