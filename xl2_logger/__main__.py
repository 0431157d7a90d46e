"""Allow ``python -m xl2_logger`` to launch the logger."""

from __future__ import annotations

import sys


def main() -> None:
    from xl2_logger import run
    sys.exit(run(sys.argv[1:]))


if __name__ == "__main__":
    main()
