"""Allow ``python -m deskscope``."""

import sys

from deskscope.cli import main

sys.exit(main())
