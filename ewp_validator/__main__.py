import sys

from ewp_validator.cli import main

sys.exit(main())
