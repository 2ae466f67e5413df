import sys

from phonica.cleanup.cli import main

sys.exit(main())
