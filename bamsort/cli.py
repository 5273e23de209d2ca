import argparse
import sys
from typing import List, Optional

from pyspark.sql import SparkSession

from bamsort.config import (
    APP_NAME,
    MAX_SPLITS_SAMPLED,
    NUM_SAMPLES,
    SAMPLE_PROBABILITY,
    SPARK_MASTER_URL,
    SPLIT_SIZE,
)
from bamsort.sort import JobFailedError, run_sort
from bamsort.timer import Timer

EXIT_USAGE = 3
EXIT_FAILURE = 5


class ArgumentParser(argparse.ArgumentParser):
    """Usage errors exit with EXIT_USAGE instead of argparse's 2."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def probability(value: str) -> float:
    p = float(value)
    if not 0.0 < p <= 1.0:
        raise argparse.ArgumentTypeError(f"must be in (0, 1], got {value}")
    return p


def positive_int(value: str) -> int:
    n = int(value)
    if n < 1:
        raise argparse.ArgumentTypeError(f"must be positive, got {value}")
    return n


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(prog="bamsort", description="Distributed BAM sorting on Spark.")
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    sort = commands.add_parser(
        "sort",
        help="BAM sorting",
        description="Sorts the BAM file in INPATH in a distributed fashion using "
                    "Spark. Output parts are placed in WORKDIR.")
    sort.add_argument("workdir", nargs="?", metavar="WORKDIR")
    sort.add_argument("inpath", nargs="?", metavar="INPATH")
    sort.add_argument("-o", "--output-file", metavar="PATH",
                      help="output a complete BAM file to local file PATH, "
                           "removing the parts from WORKDIR")
    sort.add_argument("--sample-probability", type=probability, default=SAMPLE_PROBABILITY,
                      help="per-record inclusion probability while sampling")
    sort.add_argument("--num-samples", type=positive_int, default=NUM_SAMPLES,
                      help="stop sampling after this many keys")
    sort.add_argument("--max-splits-sampled", type=positive_int, default=MAX_SPLITS_SAMPLED,
                      help="sample at most this many input splits")
    sort.add_argument("--split-size", type=positive_int, default=SPLIT_SIZE,
                      help="approximate compressed bytes per input split")
    sort.add_argument("--master", type=str, default=SPARK_MASTER_URL,
                      help="Spark master URL")
    return parser


def run_sort_command(args) -> int:
    if args.workdir is None:
        print("sort :: WORKDIR not given.", file=sys.stderr)
        return EXIT_USAGE
    if args.inpath is None:
        print("sort :: INPATH not given.", file=sys.stderr)
        return EXIT_USAGE
    if args.output_file is not None:
        print("sort :: combining (-o) not yet implemented!", file=sys.stderr)
        return EXIT_USAGE

    timer = Timer()
    timer.start()

    spark = (
        SparkSession.builder
        .appName(f"{APP_NAME} sort {args.inpath}")
        .master(args.master)
        .getOrCreate()
    )
    try:
        shards = run_sort(
            spark,
            args.workdir,
            args.inpath,
            probability=args.sample_probability,
            num_samples=args.num_samples,
            max_splits_sampled=args.max_splits_sampled,
            split_size=args.split_size,
        )
    except (OSError, ValueError, JobFailedError) as e:
        print(f"sort :: Spark error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        spark.stop()

    print(shards.to_string(index=False))
    print(f"sort :: Total time: {timer.stop_s()}.{timer.fms():03d} s.")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "sort":
        return run_sort_command(args)

    parser.print_help(sys.stderr)
    return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
