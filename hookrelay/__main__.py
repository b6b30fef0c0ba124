"""Entry point for ``python -m hookrelay``."""

import sys

from hookrelay.cli import main

if __name__ == "__main__":
    sys.exit(main())
