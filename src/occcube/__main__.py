import sys

from occcube.cli import main

if __name__ == "__main__":
    sys.exit(main())
