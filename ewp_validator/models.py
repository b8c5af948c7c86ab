"""Data models for the EWP API validator."""

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from functools import total_ordering
from typing import Any, Optional


class ValidatorError(Exception):
    """Base class for request-level errors raised before any test is run."""

    pass


class InvalidVersionString(ValidatorError):
    """Raised when a semantic version string cannot be parsed."""

    pass


class Status(Enum):
    """Verdict of a single validation step, in increasing severity."""

    SUCCESS = "success"
    NOTICE = "notice"
    WARNING = "warning"
    FAILURE = "failure"
    ERROR = "error"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    def is_worse_than(self, other: "Status") -> bool:
        return self.severity > other.severity

    @classmethod
    def worst(cls, statuses) -> "Status":
        """Return the most severe status, SUCCESS for an empty iterable."""
        return max(statuses, key=lambda s: s.severity, default=cls.SUCCESS)


_SEVERITY = {
    Status.SUCCESS: 0,
    Status.NOTICE: 1,
    Status.WARNING: 2,
    Status.FAILURE: 3,
    Status.ERROR: 4,
}


@total_ordering
@dataclass(frozen=True)
class SemanticVersion:
    """A major.minor.patch version of an API."""

    major: int
    minor: int = 0
    patch: int = 0

    _PATTERN = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")

    @classmethod
    def parse(cls, text: str) -> "SemanticVersion":
        """Parse a version string such as ``2.1.0``.

        Raises:
            InvalidVersionString: If the text is not a major.minor.patch triple.
        """
        match = cls._PATTERN.match(text.strip()) if text else None
        if not match:
            raise InvalidVersionString(f"Invalid version string: {text!r}")
        return cls(*(int(group) for group in match.groups()))

    def as_tuple(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def __lt__(self, other: "SemanticVersion") -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self.as_tuple() < other.as_tuple()

    def is_compatible_with(self, requested: "SemanticVersion") -> bool:
        """Check whether tests written for this version can run against ``requested``."""
        return self.major == requested.major and self <= requested

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


class ApiEndpoint(Enum):
    """Endpoint kinds of the EWP APIs. NONE is used by single-endpoint APIs."""

    NONE = ""
    INDEX = "index"
    GET = "get"
    UPDATE = "update"
    STATS = "stats"

    @classmethod
    def from_name(cls, name: Optional[str]) -> "ApiEndpoint":
        """Resolve an endpoint from its name, treating None and "none" as NONE.

        Raises:
            ValueError: If the name is not a known endpoint.
        """
        if name is None or name.lower() in ("", "none"):
            return cls.NONE
        return cls(name.lower())


@dataclass(frozen=True)
class ValidatedApiInfo:
    """Static description of one API version under validation."""

    api_name: str
    endpoint: ApiEndpoint
    response_element: str
    response_namespace: str

    @property
    def display_name(self) -> str:
        if self.endpoint is ApiEndpoint.NONE:
            return self.api_name
        return f"{self.api_name} {self.endpoint.value}"


@dataclass(frozen=True)
class Combination:
    """One security descriptor exercised against one endpoint with one HTTP method."""

    http_method: str
    url: str
    security: Any

    @property
    def marker(self) -> str:
        """Short label used in reports, e.g. ``GET SHTT``."""
        return f"{self.http_method} {self.security}"

    def __str__(self) -> str:
        return f"{self.http_method} {self.url} {self.security}"


@dataclass(frozen=True)
class ValidationStepWithStatus:
    """Immutable result of one executed (or skipped) validation step."""

    name: str
    status: Status
    message: Optional[str] = None
    combination: Optional[str] = None
    request: Optional[Any] = None
    response: Optional[Any] = None
    skipped: bool = False


@dataclass
class ValidationReport:
    """Full result of one validation run."""

    api_name: str
    endpoint: ApiEndpoint
    url: str
    version: str
    security: str
    steps: list[ValidationStepWithStatus] = field(default_factory=list)
    duration_seconds: float = 0.0
    timestamp: str = field(
        default_factory=lambda: time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
    )

    @property
    def worst_status(self) -> Status:
        return Status.worst(step.status for step in self.steps)

    @property
    def passed(self) -> bool:
        """True when no step ended with FAILURE or ERROR."""
        return not self.worst_status.is_worse_than(Status.WARNING)

    def count(self, status: Status) -> int:
        return sum(1 for step in self.steps if step.status == status)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp,
            "api": self.api_name,
            "endpoint": self.endpoint.value,
            "url": self.url,
            "version": self.version,
            "security": self.security,
            "duration_seconds": self.duration_seconds,
            "passed": self.passed,
            "worst_status": self.worst_status.value,
            "steps": [
                {
                    "name": step.name,
                    "status": step.status.value,
                    "message": step.message,
                    "combination": step.combination,
                    "skipped": step.skipped,
                }
                for step in self.steps
            ],
            "summary": {
                status.value: self.count(status) for status in Status
            },
        }
