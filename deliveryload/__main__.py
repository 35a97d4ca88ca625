"""Allow ``python -m deliveryload``."""

import sys

from deliveryload.cli import main

sys.exit(main())
