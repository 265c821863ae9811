"""Allow running as python -m clickcarry_server."""

from .cli import main

if __name__ == "__main__":
    main()
