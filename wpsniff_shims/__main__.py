"""Allow ``python -m wpsniff_shims``."""

import sys

from wpsniff_shims.main import main

if __name__ == "__main__":
    sys.exit(main())
