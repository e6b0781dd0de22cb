"""command_interface entry point.

Supports: python -m command_interface
"""

import sys

from .app import main

if __name__ == "__main__":
    sys.exit(main())
