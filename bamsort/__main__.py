import sys

from bamsort.cli import main

sys.exit(main())
