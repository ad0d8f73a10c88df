"""Allow running as ``python -m lopper``."""

from lopper.cli import main

if __name__ == "__main__":
    main()
