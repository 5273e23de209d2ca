import os

# ========================
# Spark settings
# ========================

# Where the sort job is submitted; local mode unless overridden
SPARK_MASTER_URL = os.environ.get("BAMSORT_SPARK_MASTER", "local[*]")

APP_NAME = "bamsort"

# Fraction of the reported worker capacity used as the partition count
CAPACITY_FRACTION = (9, 10)

# ========================
# Sampling settings
# ========================

# Per-record inclusion probability while sampling a split
SAMPLE_PROBABILITY = 0.01

# Sampling stops once this many keys are held
NUM_SAMPLES = 10000

# Upper bound on the number of splits read during sampling
MAX_SPLITS_SAMPLED = 100

# ========================
# Input splits
# ========================

# Approximate compressed bytes per split; each cut is moved to the next record start
SPLIT_SIZE = 64 * 1024 * 1024

# ========================
# Naming
# ========================

# Boundary artifact is "<PARTITION_FILE_PREFIX><input name>", next to the input
PARTITION_FILE_PREFIX = "_partitioning"
BOUNDARY_COLUMN = "boundary"

SHARD_EXTENSION = ".bam"

# Task working files live here (inside WORKDIR) until committed
TEMPORARY_DIR = "_temporary"
