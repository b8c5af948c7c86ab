"""Validation steps and the context they run in.

A step performs at most one request, evaluates it and returns a
:class:`StepResult`. The result always carries a :class:`StepOutcome`; when
the step found that the rest of the suite cannot sensibly run it also
carries an :class:`AbortSignal`. Aborting is ordinary data returned to the
suite driver, never an exception.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from logging import getLogger
from typing import Any, Callable, Optional

from ewp_validator.catalogue import ApiEntry, Catalogue
from ewp_validator.credentials import CredentialStore
from ewp_validator.models import Combination, SemanticVersion, Status, ValidatedApiInfo
from ewp_validator.parameters import ValidationParameters
from ewp_validator.request_builder import RequestBuilder
from ewp_validator.transport import Request, Response, Transport

_LOG = getLogger(__name__)

TIMEOUT_MESSAGE = "Request timed out."


class RunState(Enum):
    """Life cycle of one suite run."""

    NOT_STARTED = "not-started"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class SuiteState:
    """Mutable record owned by a single suite run.

    ``discovered`` holds entities found or supplied so far (selected ids,
    fetched details). It is seeded from the previous suite of the chain so
    that setup suites can hand their findings to the suites after them.
    """

    url: str
    version: SemanticVersion
    parameters: ValidationParameters = field(default_factory=ValidationParameters)
    api_entry: Optional[ApiEntry] = None
    discovered: dict[str, Any] = field(default_factory=dict)
    run_state: RunState = RunState.NOT_STARTED

    def __getitem__(self, key: str) -> Any:
        return self.discovered[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.discovered[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self.discovered

    def get(self, key: str, default: Any = None) -> Any:
        return self.discovered.get(key, default)

    def max_ids(self, name: str, default: int = 1) -> int:
        """Limit the endpoint advertises for a repeated parameter."""
        if self.api_entry is None:
            return default
        return self.api_entry.max_ids.get(name, default)

    def parameter_or(self, name: str, default: Any = None) -> Any:
        if self.parameters.is_provided(name):
            return self.parameters.value_of(name)
        return default


@dataclass(frozen=True)
class StepOutcome:
    """Verdict of one step and the exchange it is based on."""

    status: Status
    message: Optional[str] = None
    request: Optional[Request] = None
    response: Optional[Response] = None
    skipped: bool = False


@dataclass(frozen=True)
class AbortSignal:
    """Tells the suite driver to stop running the current suite."""

    reason: str


@dataclass(frozen=True)
class StepResult:
    """What a step returns: always an outcome, optionally an abort signal."""

    outcome: StepOutcome
    abort: Optional[AbortSignal] = None

    @classmethod
    def success(cls, message: Optional[str] = None, **exchange) -> "StepResult":
        return cls(StepOutcome(Status.SUCCESS, message, **exchange))

    @classmethod
    def verdict(cls, status: Status, message: Optional[str], **exchange) -> "StepResult":
        return cls(StepOutcome(status, message, **exchange))

    @classmethod
    def skip(cls, reason: str) -> "StepResult":
        return cls(StepOutcome(Status.NOTICE, f"Skipped: {reason}", skipped=True))

    @classmethod
    def aborted(cls, status: Status, reason: str, **exchange) -> "StepResult":
        return cls(StepOutcome(status, reason, **exchange), AbortSignal(reason))


@dataclass(frozen=True)
class StepContext:
    """Everything a step may use. The state is the only mutable part."""

    api_info: ValidatedApiInfo
    state: SuiteState
    catalogue: Catalogue
    credentials: CredentialStore
    transport: Transport
    builder: RequestBuilder
    timeout: float
    combination: Optional[Combination] = None

    def with_combination(self, combination: Combination) -> "StepContext":
        return replace(self, combination=combination)


StepAction = Callable[[StepContext], StepResult]
SkipCheck = Callable[[SuiteState], Optional[str]]


@dataclass(frozen=True)
class ValidationStep:
    """One atomic check.

    Args:
        name: Human readable description shown in the report
        action: Callable performing the check
        skip_reason: Optional callable; a non-empty result skips the step
        fatal: Abort the suite when the step ends with ERROR
    """

    name: str
    action: StepAction
    skip_reason: Optional[SkipCheck] = None
    fatal: bool = False

    def run(self, ctx: StepContext) -> StepResult:
        if self.skip_reason is not None:
            reason = self.skip_reason(ctx.state)
            if reason:
                return StepResult.skip(reason)

        try:
            result = self.action(ctx)
        except Exception as e:
            _LOG.exception("Step %r raised an unexpected error", self.name)
            result = StepResult.verdict(Status.ERROR, f"Internal error: {e}")

        if self.fatal and result.abort is None and result.outcome.status is Status.ERROR:
            result = StepResult(result.outcome, AbortSignal(result.outcome.message or self.name))
        return result
