import sys

from tmevents.cli import main

sys.exit(main())
