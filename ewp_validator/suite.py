"""Suite driver: runs the steps of one suite for every security combination.

A suite first runs its suite-level steps, then enumerates the combinations
of HTTP method and security descriptor the endpoint can be tested with, and
runs its per-combination steps for each of them. Results are collected in
combination order, then step order.
"""

from dataclasses import dataclass
from logging import getLogger
from typing import Callable, Optional

from ewp_validator.checks import catalogue_lookup, expect_https_url, unsupported_method
from ewp_validator.credentials import NoUsableCredential
from ewp_validator.models import Combination, Status, ValidatedApiInfo, ValidationStepWithStatus
from ewp_validator.parameters import ValidationParameter
from ewp_validator.reporters.base import Reporter
from ewp_validator.security import SecurityFilter
from ewp_validator.steps import RunState, StepContext, StepOutcome, ValidationStep

_LOG = getLogger(__name__)


@dataclass(frozen=True)
class SuiteSpec:
    """Everything that distinguishes one suite from another.

    Args:
        name: Suite name used in logs and abort reports
        api_info: The API version the suite validates
        combination_steps: Builds the steps for the combination bound to the context
        setup: Steps run once before any combination
        parameters: Parameters the operator may supply to this suite
        once: Run the combination steps for the first testable combination only
        http_methods: HTTP methods every descriptor is combined with
        requires: State keys an earlier suite must have discovered
    """

    name: str
    api_info: ValidatedApiInfo
    combination_steps: Callable[[StepContext], list[ValidationStep]]
    setup: tuple[ValidationStep, ...] = ()
    parameters: tuple[ValidationParameter, ...] = ()
    once: bool = False
    http_methods: tuple[str, ...] = ("GET", "POST")
    requires: tuple[str, ...] = ()


class ValidationSuite:
    """Runs one suite against the endpoint described by the context's state.

    Args:
        spec: The suite to run
        ctx: Context without a combination; its state belongs to this run only
        reporter: Optional reporter notified of every recorded step
    """

    def __init__(self, spec: SuiteSpec, ctx: StepContext, reporter: Optional[Reporter] = None):
        self.spec = spec
        self.ctx = ctx
        self.reporter = reporter
        self.results: list[ValidationStepWithStatus] = []
        self.abort_reason: Optional[str] = None

    @property
    def state(self):
        return self.ctx.state

    def run(self, security_filter: Optional[SecurityFilter] = None) -> list[ValidationStepWithStatus]:
        """Run the suite.

        Args:
            security_filter: Restricts the tested descriptors; None tests all

        Returns:
            Results of this suite, including steps recorded as not run
        """
        self.state.run_state = RunState.RUNNING
        _LOG.info("Running suite %s against %s", self.spec.name, self.state.url)

        common_steps = [] if self.spec.once else [expect_https_url(), catalogue_lookup()]
        if not self._run_steps(common_steps, self.ctx):
            return self.results

        combinations = self._combinations(security_filter)
        if self.spec.once:
            combinations = combinations[:1]

        missing = [key for key in self.spec.requires if key not in self.state]
        if missing:
            reason = f"Data needed by these tests was not found: {', '.join(missing)}."
            self._record(self.spec.name, StepOutcome(Status.NOTICE, f"Skipped: {reason}", skipped=True))
            self._abort(reason)
            self._record_not_run(combinations)
            return self.results

        if not self._run_steps(list(self.spec.setup), self.ctx):
            self._record_not_run(combinations)
            return self.results

        if not combinations:
            self._record(
                self.spec.name,
                StepOutcome(
                    Status.NOTICE,
                    f"No testable security combination matches {security_filter or 'the endpoint'}.",
                    skipped=True,
                ),
            )
        for index, combination in enumerate(combinations):
            combination_ctx = self.ctx.with_combination(combination)
            steps = list(self.spec.combination_steps(combination_ctx))
            if not self.spec.once:
                steps.insert(0, unsupported_method())
            if not self._run_steps(steps, combination_ctx):
                self._record_not_run(combinations[index + 1:])
                return self.results

        self.state.run_state = RunState.COMPLETED
        return self.results

    def _combinations(self, security_filter: Optional[SecurityFilter]) -> list[Combination]:
        """Combinations the endpoint advertises and the validator can realize."""
        state = self.state
        info = self.spec.api_info
        if state.api_entry is None:
            state.api_entry = self.ctx.catalogue.api_entry_for_url(
                state.url, info.api_name, info.endpoint
            )
        if state.api_entry is None:
            return []

        combinations = []
        for descriptor in state.api_entry.descriptors():
            if security_filter is not None and not security_filter.accepts(descriptor):
                continue
            for method in self.spec.http_methods:
                try:
                    request = self.ctx.builder.build(state.url, method, [], descriptor)
                except NoUsableCredential as e:
                    _LOG.debug("Skipping %s %s: %s", method, descriptor, e)
                    continue
                if request is None:
                    _LOG.debug("Skipping %s %s: not supported by the endpoint", method, descriptor)
                    continue
                combinations.append(Combination(method, state.url, descriptor))
        return combinations

    def _run_steps(self, steps: list[ValidationStep], ctx: StepContext) -> bool:
        """Run steps in order. Returns False when the suite was aborted."""
        for index, step in enumerate(steps):
            result = step.run(ctx)
            self._record(step.name, result.outcome, ctx.combination)
            if result.abort is None:
                continue

            reason = result.abort.reason
            for remaining in steps[index + 1:]:
                self._record(
                    remaining.name,
                    StepOutcome(Status.NOTICE, f"Skipped: suite aborted. {reason}", skipped=True),
                    ctx.combination,
                )
            self._abort(reason)
            return False
        return True

    def _abort(self, reason: str) -> None:
        self.abort_reason = reason
        self.state.run_state = RunState.ABORTED
        _LOG.info("Suite %s aborted: %s", self.spec.name, reason)
        if self.reporter:
            self.reporter.on_suite_abort(self.spec.name, reason)

    def _record_not_run(self, combinations: list[Combination]) -> None:
        """Record one skipped entry per combination the abort left untested."""
        for combination in combinations:
            self._record(
                self.spec.name,
                StepOutcome(
                    Status.NOTICE, f"Skipped: suite aborted. {self.abort_reason}", skipped=True
                ),
                combination,
            )

    def _record(
        self,
        name: str,
        outcome: StepOutcome,
        combination: Optional[Combination] = None,
    ) -> None:
        step = ValidationStepWithStatus(
            name=name,
            status=outcome.status,
            message=outcome.message,
            combination=combination.marker if combination else None,
            request=outcome.request,
            response=outcome.response,
            skipped=outcome.skipped,
        )
        self.results.append(step)
        if self.reporter:
            self.reporter.on_step_complete(step)
