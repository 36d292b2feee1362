import sys

from model_orchestrator.cli import main

sys.exit(main())
