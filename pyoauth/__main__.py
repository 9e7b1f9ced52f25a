"""Allow ``python -m pyoauth``."""

import sys

from .cli import main


sys.exit(main())
