import sys

from cortexbot.cli import main

sys.exit(main())
