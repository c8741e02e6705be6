"""Allow ``python -m roboclaw_mcp``."""

import sys

from roboclaw_mcp.cli import main

sys.exit(main())
