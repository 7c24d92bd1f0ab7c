"""Allows running shrinkray as ``python -m shrinkray``."""

import sys

from shrinkray.cli import main


sys.exit(main())
