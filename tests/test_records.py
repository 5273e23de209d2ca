import zlib

import pytest

import bamsort.records as records_module
from bamsort.bgzf import split_virtual_offset
from bamsort.records import (
    UNPLACED_REFERENCE,
    BamSplit,
    compute_splits,
    keyed_records,
    open_alignments,
    read_header,
    read_split,
    read_split_keys,
    sort_key,
)
from bamsort.sampler import RandomSampler


class TestSortKey:

    def test_placed_read_packs_reference_and_start(self, bam_factory):
        read = bam_factory.make_read("r", (1, 12345))
        assert sort_key(read) == (1 << 32) | 12345

    def test_reference_dominates_position(self, bam_factory):
        low = bam_factory.make_read("a", (0, 99999))
        high = bam_factory.make_read("b", (1, 0))
        assert sort_key(low) < sort_key(high)

    def test_unplaced_reads_sort_last(self, bam_factory):
        placed = bam_factory.make_read("a", (1, 49999))
        unplaced = bam_factory.make_read("b", None)
        assert sort_key(unplaced) > sort_key(placed)

    def test_unplaced_key_is_stable_hash_of_name(self, bam_factory):
        read = bam_factory.make_read("readX", None)
        expected = UNPLACED_REFERENCE << 32 | zlib.crc32(b"readX")
        assert sort_key(read) == expected
        assert sort_key(bam_factory.make_read("readX", None)) == expected

    def test_key_fits_signed_64_bits(self, bam_factory):
        read = bam_factory.make_read("r", None)
        assert 0 <= sort_key(read) < 2 ** 63


class CountingAlignments:
    """Wraps an AlignmentFile and counts the records decoded through it."""

    decoded = 0

    def __init__(self, bam):
        self.bam = bam

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.bam.close()

    def __iter__(self):
        return self

    def __next__(self):
        read = next(self.bam)
        CountingAlignments.decoded += 1
        return read

    def __getattr__(self, name):
        return getattr(self.bam, name)


@pytest.fixture
def many_blocks(bam_factory):
    """A BAM spread over several BGZF blocks."""
    return bam_factory.create("many.bam", [(i % 2, (i * 7919) % 40000) for i in range(6000)])


class TestSplits:

    def test_small_file_is_one_split(self, bam_factory):
        path = bam_factory.create_from_keys("in.bam", range(10))
        [split] = compute_splits(path)
        assert split.end is None
        with open_alignments(path) as bam:
            assert split.start == bam.tell()

    def test_header_only_file(self, bam_factory):
        path = bam_factory.create("in.bam", [])
        [split] = compute_splits(path, 1)
        assert list(read_split(split)) == []

    def test_cuts_land_on_record_starts(self, bam_factory, many_blocks):
        splits = compute_splits(many_blocks, 1024)

        assert len(splits) > 1
        assert splits[-1].end is None
        for left, right in zip(splits, splits[1:]):
            assert left.end == right.start
            assert left.start < right.start
            assert split_virtual_offset(right.start)[1] > 0

    def test_splits_cover_every_record_once(self, bam_factory, many_blocks):
        splits = compute_splits(many_blocks, 1024)
        names = [read.query_name for split in splits for read in read_split(split)]
        assert names == [read.query_name for read in bam_factory.read(many_blocks)]

    @pytest.mark.parametrize("split_size", [1, 5000, 30000, 10 ** 9],
                             ids=["every_block", "small", "medium", "whole_file"])
    def test_split_size_does_not_change_contents(self, bam_factory, many_blocks, split_size):
        splits = compute_splits(many_blocks, split_size)
        keys = [key for split in splits for key in read_split_keys(split)]
        assert keys == bam_factory.read_keys(many_blocks)

    def test_driver_decodes_only_sampled_records(self, many_blocks, monkeypatch):
        monkeypatch.setattr(records_module, "open_alignments",
                            lambda path: CountingAlignments(open_alignments(path)))
        monkeypatch.setattr(CountingAlignments, "decoded", 0)

        splits = compute_splits(many_blocks, 1024)
        assert CountingAlignments.decoded == 0

        sampler = RandomSampler(probability=1.0, num_samples=5, max_splits_sampled=1, seed=0)
        assert len(sampler.get_sample(splits)) == 5
        assert CountingAlignments.decoded == 5

    def test_invalid_split_size(self, bam_factory):
        path = bam_factory.create_from_keys("in.bam", [1])
        with pytest.raises(ValueError):
            compute_splits(path, 0)

    def test_missing_input_raises_os_error(self, tmp_path):
        with pytest.raises(OSError):
            compute_splits(str(tmp_path / "missing.bam"))

    def test_split_keys(self, bam_factory):
        path = bam_factory.create_from_keys("in.bam", [5, 1, 9])
        [split] = compute_splits(path)
        assert list(read_split_keys(split)) == [5, 1, 9]

    def test_keyed_records_carry_sam_text(self, bam_factory):
        path = bam_factory.create_from_keys("in.bam", [7])
        [split] = compute_splits(path)
        [(key, text)] = list(keyed_records(split))
        assert key == 7
        assert text.split("\t")[0] == "read0000"


def test_read_header(bam_factory, header):
    path = bam_factory.create_from_keys("in.bam", [1, 2])
    assert read_header(path).to_dict() == header.to_dict()


def test_bam_split_is_a_plain_tuple():
    split = BamSplit("x.bam", 10, None)
    assert tuple(split) == ("x.bam", 10, None)
