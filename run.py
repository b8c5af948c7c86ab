#!/usr/bin/env python3
"""
EWP API Validator

Run this script to validate an EWP API endpoint against the suites
registered for its version.

Usage:
    python run.py --list                                    # Show validators
    python run.py --api institutions --version 2.0.0 --url URL
    python run.py --api iias --endpoint index --version 2.0.0 --url URL \
        --param hei_id=uw.edu.pl                            # Pass parameters
    python run.py ... --security SHTT                       # One security method
    python run.py ... -q                                    # Quiet mode (summary only)
    python run.py ... -j results.json                       # Output JSON results
    python run.py ... --github-actions                      # GitHub Actions mode
"""

import sys
from ewp_validator.cli import main

if __name__ == "__main__":
    sys.exit(main())
