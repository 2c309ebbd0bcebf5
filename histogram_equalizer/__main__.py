import sys

from histogram_equalizer.main import main

if __name__ == "__main__":
    sys.exit(main())
