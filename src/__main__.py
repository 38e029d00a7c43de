"""
Entry point for running the bootstrap directly, e.g. as a container command.

Usage:
    BOOTSTRAP_ENTRY_POINT=myserver.main:main python -m src [app options...]

All process arguments are forwarded to the primary entry point unchanged.
"""
import sys

from config import Config
from .core.bootstrap import Bootstrapper, check_interpreter


def main() -> int:
    if not Config.ENTRY_POINT:
        print("BOOTSTRAP_ENTRY_POINT is not set", file=sys.stderr)
        return 1
    if not Config.validate():
        return 1

    check_interpreter()
    outcome = Bootstrapper(Config.ENTRY_POINT).boot(tuple(sys.argv[1:]))
    return 0 if outcome.delegated else 1


if __name__ == "__main__":
    sys.exit(main())
