"""
API entrypoint.

Operator notes:
- This file should remain extremely small and boring.
- Runtime configuration is read inside guin.main.run(); a missing PORT
  stops the process here, before any listener is bound.
- Exit codes: 0 clean shutdown, 2 shutdown forced (deadline passed or a
  second Ctrl+C), 1 failed to start or to keep listening.
"""

import logging
import sys

from guin.main import run


def main() -> None:
    try:
        code = run()
    except Exception:
        logging.basicConfig(level=logging.ERROR)
        logging.exception("API failed to start.")
        print("\n❌ API failed to start.")
        print("   See error above. Most common causes:")
        print("   - PORT missing from the environment / .env")
        print("   - Database URL invalid or unreachable (DATABASE_URL)")
        print("   - Missing dependencies / broken venv\n")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
