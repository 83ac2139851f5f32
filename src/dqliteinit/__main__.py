import sys

from dqliteinit.cli import main

sys.exit(main())
