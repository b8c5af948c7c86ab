"""JSON reporter for structured output and CI integration."""

import json
import os
from pathlib import Path
from typing import Optional

from ewp_validator.models import ValidatedApiInfo, ValidationReport, ValidationStepWithStatus
from ewp_validator.reporters.base import Reporter


class JsonReporter(Reporter):
    """JSON reporter for structured output.

    Args:
        output_path: Optional file path to write JSON output
        github_output: If True, write summary values to GITHUB_OUTPUT for Actions
    """

    def __init__(
        self,
        output_path: Optional[str] = None,
        github_output: bool = False,
    ):
        self.output_path = output_path
        self.github_output = github_output
        self.aborted_suites: list[dict[str, str]] = []

    def on_run_start(self, api_info: ValidatedApiInfo, url: str, version: str) -> None:
        """No-op for JSON reporter."""
        pass

    def on_step_complete(self, step: ValidationStepWithStatus) -> None:
        """No-op - data comes from the report."""
        pass

    def on_suite_abort(self, suite_name: str, reason: str) -> None:
        self.aborted_suites.append({"suite": suite_name, "reason": reason})

    def on_run_complete(self, report: ValidationReport) -> dict:
        """Generates and outputs JSON data.

        Returns:
            The generated JSON data as a dictionary
        """
        output = report.to_dict()
        output["aborted_suites"] = list(self.aborted_suites)

        if self.output_path:
            self._write_to_file(output)

        if self.github_output:
            self._write_github_output(output, report)

        return output

    def _write_to_file(self, output: dict) -> None:
        path = Path(self.output_path)

        # Create parent directories if needed
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            json.dump(output, f, indent=2)

    def _write_github_output(self, output: dict, report: ValidationReport) -> None:
        github_output_file = os.environ.get("GITHUB_OUTPUT")
        if not github_output_file:
            return

        with open(github_output_file, "a", encoding="utf-8") as f:
            f.write(f"passed={str(report.passed).lower()}\n")
            f.write(f"worst_status={report.worst_status.value}\n")

            # Full JSON as multiline output
            f.write("results<<EOF\n")
            f.write(json.dumps(output))
            f.write("\nEOF\n")
