import sys

from rete.cli import main

sys.exit(main())
