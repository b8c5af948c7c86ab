"""
EWP API Validator.

Runs the validation suites of the Erasmus Without Paper network against an
endpoint and reports one verdict per step.
"""

__version__ = "1.0.0"

from ewp_validator.cli import main

__all__ = ["main", "__version__"]
