"""Allow ``python -m hnrank``; see hnrank/main.py for the commands."""

import sys

from hnrank.main import main

sys.exit(main())
