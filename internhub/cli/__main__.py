import sys

from internhub.cli import main

sys.exit(main())
