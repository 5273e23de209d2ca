"""Shared pytest fixtures for bamsort tests."""

import pysam
import pytest

from bamsort.records import sort_key


HEADER_DICT = {
    "HD": {"VN": "1.6", "SO": "unsorted"},
    "SQ": [{"SN": "ref1", "LN": 100000}, {"SN": "ref2", "LN": 50000}],
    "RG": [{"ID": "sample1"}],
    "CO": ["made by the bamsort test suite"],
}


@pytest.fixture
def header():
    return pysam.AlignmentHeader.from_dict(HEADER_DICT)


@pytest.fixture
def bam_factory(tmp_path, header):
    """Factory fixture for small BAM files.

    Alignments are given as (reference_id, start) pairs; ``None`` makes an
    unmapped read.

    Example:
        def test_something(bam_factory):
            path = bam_factory.create("in.bam", [(0, 10), (1, 5), None])
            reads = bam_factory.read(path)
    """

    class BamFactory:
        def __init__(self, tmp_path, header):
            self.tmp_path = tmp_path
            self.header = header

        def make_read(self, name, placement):
            read = pysam.AlignedSegment(self.header)
            read.query_name = name
            read.query_sequence = "ACGTACGTAC"
            read.query_qualities = pysam.qualitystring_to_array("IIIIIIIIII")
            if placement is None:
                read.flag = 4
                read.reference_id = -1
                read.reference_start = -1
            else:
                read.flag = 0
                read.reference_id, read.reference_start = placement
                read.mapping_quality = 60
                read.cigartuples = [(0, 10)]
            return read

        def create(self, filename, placements):
            """Write placements, in the given order, to a BAM file."""
            path = self.tmp_path / filename
            with pysam.AlignmentFile(str(path), "wb", header=self.header) as out:
                for i, placement in enumerate(placements):
                    out.write(self.make_read(f"read{i:04d}", placement))
            return str(path)

        def create_from_keys(self, filename, positions):
            """Write reads on the first reference at the given 0-based starts."""
            return self.create(filename, [(0, pos) for pos in positions])

        def read(self, path):
            with pysam.AlignmentFile(str(path), "rb", check_sq=False) as bam:
                return list(bam)

        def read_keys(self, path):
            return [sort_key(read) for read in self.read(path)]

        def read_header(self, path):
            with pysam.AlignmentFile(str(path), "rb", check_sq=False) as bam:
                return bam.header.to_dict()

    return BamFactory(tmp_path, header)


@pytest.fixture
def spark():
    """Local-mode SparkSession; skipped where no JVM can be started."""
    pyspark_sql = pytest.importorskip("pyspark.sql")
    try:
        session = (
            pyspark_sql.SparkSession.builder
            .appName("bamsort-tests")
            .master("local[2]")
            .config("spark.ui.enabled", "false")
            .getOrCreate()
        )
    except Exception as e:
        pytest.skip(f"Spark unavailable: {e}")
    yield session
    session.stop()
