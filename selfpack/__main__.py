"""Allow ``python -m selfpack``."""

import sys

from selfpack.cli import main

if __name__ == "__main__":
    sys.exit(main())
