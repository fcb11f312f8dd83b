import sys

from pharos_exporter.cli import main

if __name__ == "__main__":
    sys.exit(main())
