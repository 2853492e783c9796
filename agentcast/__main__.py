"""Allow ``python -m agentcast``."""

import sys

from .cli import main

sys.exit(main())
