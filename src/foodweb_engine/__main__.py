"""Entry point for ``python -m foodweb_engine``."""

import sys

from .cli import main

sys.exit(main())
