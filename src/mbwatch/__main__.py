# =============================================================================
# mbwatch Entry Point for `python -m mbwatch`
# =============================================================================

import sys

from mbwatch.app import main

if __name__ == "__main__":
    sys.exit(main())
