"""Base reporter interface."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ewp_validator.models import ValidatedApiInfo, ValidationReport, ValidationStepWithStatus


class Reporter(ABC):
    """Abstract base class for validation result reporters."""

    @abstractmethod
    def on_run_start(self, api_info: "ValidatedApiInfo", url: str, version: str) -> None:
        """Called when validation of an endpoint starts."""
        pass

    @abstractmethod
    def on_step_complete(self, step: "ValidationStepWithStatus") -> None:
        """Called when a step has been executed or recorded as not run."""
        pass

    @abstractmethod
    def on_suite_abort(self, suite_name: str, reason: str) -> None:
        """Called when a suite stops early."""
        pass

    @abstractmethod
    def on_run_complete(self, report: "ValidationReport") -> None:
        """Called when all suites of the run are complete."""
        pass
