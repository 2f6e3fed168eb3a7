"""Allow ``python -m authsession``."""

import sys

from .cli import main


sys.exit(main())
