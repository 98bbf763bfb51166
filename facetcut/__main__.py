import sys

from facetcut.cli import main

sys.exit(main())
