import sys

from senamhi.cli import main

sys.exit(main())
