import argparse
import os
from typing import List, Optional

import numpy as np
import pysam

DEFAULT_REFERENCES = [("chr1", 248956422), ("chr2", 242193529), ("chr3", 198295559)]
READ_LENGTH = 50


def make_header(references=DEFAULT_REFERENCES) -> pysam.AlignmentHeader:
    return pysam.AlignmentHeader.from_dict({
        "HD": {"VN": "1.6", "SO": "unsorted"},
        "SQ": [{"SN": name, "LN": length} for name, length in references],
    })


def generate_skewed_references(num_rows, num_references, zipf_param=2.0, rng=None):
    rng = rng or np.random.default_rng()
    refs = rng.zipf(zipf_param, num_rows)
    return np.clip(refs, 1, num_references) - 1


def generate_alignments(
    header: pysam.AlignmentHeader,
    num_rows: int,
    zipf_param: float = 2.0,
    unplaced_fraction: float = 0.05,
    seed: Optional[int] = None,
) -> List[pysam.AlignedSegment]:
    rng = np.random.default_rng(seed)
    lengths = np.array(header.lengths)
    refs = generate_skewed_references(num_rows, len(lengths), zipf_param=zipf_param, rng=rng)
    starts = (rng.random(num_rows) * (lengths[refs] - READ_LENGTH)).astype(np.int64)
    unplaced = rng.random(num_rows) < unplaced_fraction
    bases = np.array(list("ACGT"))

    reads = []
    for i in range(num_rows):
        read = pysam.AlignedSegment(header)
        read.query_name = f"read{i:09d}"
        read.query_sequence = "".join(rng.choice(bases, READ_LENGTH))
        read.query_qualities = pysam.qualitystring_to_array("I" * READ_LENGTH)
        if unplaced[i]:
            read.flag = 4
            read.reference_id = -1
            read.reference_start = -1
        else:
            read.flag = 0
            read.reference_id = int(refs[i])
            read.reference_start = int(starts[i])
            read.mapping_quality = 60
            read.cigartuples = [(0, READ_LENGTH)]
        reads.append(read)
    return reads


def write_bam(path: str, header: pysam.AlignmentHeader, reads) -> None:
    with pysam.AlignmentFile(path, "wb", header=header) as out:
        for read in reads:
            out.write(read)


def main(args):
    os.makedirs(os.path.dirname(os.path.abspath(args.output)), exist_ok=True)

    print(f"Generating {args.num_rows} alignments, skew={args.zipf_param}, "
          f"unplaced={args.unplaced_fraction}...")
    header = make_header()
    reads = generate_alignments(header, args.num_rows, zipf_param=args.zipf_param,
                                unplaced_fraction=args.unplaced_fraction, seed=args.seed)
    write_bam(args.output, header, reads)
    print(f"Saved {args.output} with {len(reads)} alignments.")


def run():
    parser = argparse.ArgumentParser(description="Generate an unsorted BAM with skewed reference coverage.")
    parser.add_argument("--output", type=str, required=True, help="BAM file to write")
    parser.add_argument("--num_rows", type=int, required=True, help="Number of alignments")
    parser.add_argument("--zipf_param", type=float, default=2.0, help="Zipf skew parameter for reference choice")
    parser.add_argument("--unplaced_fraction", type=float, default=0.05, help="Fraction of unmapped reads")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")

    main(parser.parse_args())


if __name__ == "__main__":
    run()
