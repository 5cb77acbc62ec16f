import sys

from deploy_gate.cli import main

sys.exit(main())
