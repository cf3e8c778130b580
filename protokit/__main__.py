"""Module entry point for running protokit as a package.

Allows: python -m protokit <command>
"""

from protokit.cli import main
import sys

if __name__ == '__main__':
    sys.exit(main())
