"""Validator registry and the entry point of a validation run.

An :class:`ApiValidator` keeps, for one API endpoint, the chains of suites
registered per version. The :class:`ApiValidatorsManager` dispatches
requests to the right validator and performs the request-level checks that
must pass before anything is sent over the network.
"""

import time
from dataclasses import dataclass
from logging import getLogger
from typing import Optional, Union
from urllib.parse import urlsplit

from ewp_validator.apis import register_all
from ewp_validator.catalogue import Catalogue
from ewp_validator.credentials import CredentialStore
from ewp_validator.models import (
    ApiEndpoint,
    SemanticVersion,
    ValidationReport,
    ValidationStepWithStatus,
    ValidatorError,
)
from ewp_validator.parameters import ValidationParameter, ValidationParameters, merge_parameters
from ewp_validator.reporters.base import Reporter
from ewp_validator.request_builder import InvalidEndpoint, RequestBuilder
from ewp_validator.security import SecurityFilter
from ewp_validator.steps import StepContext, SuiteState
from ewp_validator.suite import SuiteSpec, ValidationSuite
from ewp_validator.transport import DEFAULT_TIMEOUT, Transport

_LOG = getLogger(__name__)

VersionLike = Union[str, SemanticVersion]


class NoCompatibleVersion(ValidatorError):
    """Raised when no tests are registered for the requested version."""

    pass


class UnknownApi(ValidatorError):
    """Raised when no validator is registered for an API endpoint."""

    pass


@dataclass
class ValidationEnvironment:
    """Shared, read-only collaborators of every run."""

    catalogue: Catalogue
    credentials: CredentialStore
    transport: Transport
    timeout: float = DEFAULT_TIMEOUT


def _as_version(version: VersionLike) -> SemanticVersion:
    if isinstance(version, SemanticVersion):
        return version
    return SemanticVersion.parse(version)


class ApiValidator:
    """Suites of one API endpoint, registered per version.

    Args:
        api_name: Name of the validated API
        endpoint: Endpoint kind of the validated API
        environment: Collaborators used when running tests, may be None
            when the validator is only inspected
    """

    def __init__(
        self, api_name: str, endpoint: ApiEndpoint, environment: Optional[ValidationEnvironment]
    ):
        self.api_name = api_name
        self.endpoint = endpoint
        self.environment = environment
        self._chains: dict[SemanticVersion, list[SuiteSpec]] = {}

    def register(self, version: VersionLike, spec: SuiteSpec) -> "ApiValidator":
        """Append a suite to the chain run for ``version``."""
        self._chains.setdefault(_as_version(version), []).append(spec)
        return self

    @property
    def versions(self) -> list[SemanticVersion]:
        return sorted(self._chains)

    def compatible_version(self, requested: VersionLike) -> Optional[SemanticVersion]:
        """Highest registered version whose tests can run against ``requested``."""
        requested = _as_version(requested)
        candidates = [v for v in self._chains if v.is_compatible_with(requested)]
        return max(candidates, default=None)

    def chain_for(self, requested: VersionLike) -> list[SuiteSpec]:
        """Suites run for ``requested``.

        Raises:
            NoCompatibleVersion: If nothing is registered for the version.
        """
        registered = self.compatible_version(requested)
        if registered is None:
            raise NoCompatibleVersion(
                f"No tests for {self.api_name} {self.endpoint.value} version {requested}."
            )
        return self._chains[registered]

    def get_parameters(self, requested: VersionLike) -> list[ValidationParameter]:
        """Parameters declared by the chain run for ``requested``."""
        return merge_parameters(spec.parameters for spec in self.chain_for(requested))

    def run_tests(
        self,
        url: str,
        version: VersionLike,
        security_filter: Optional[SecurityFilter] = None,
        params: Optional[ValidationParameters] = None,
        reporter: Optional[Reporter] = None,
    ) -> list[ValidationStepWithStatus]:
        """Run every suite registered for ``version`` against ``url``.

        Args:
            url: Endpoint under validation
            version: Version the endpoint implements
            security_filter: Restricts the tested descriptors
            params: Operator supplied parameters
            reporter: Optional reporter for progress callbacks

        Returns:
            Results of all suites in registration order

        Raises:
            NoCompatibleVersion: If nothing is registered for the version.
            ParameterError: If the parameters do not resolve.
            InvalidEndpoint: If the URL is malformed.
        """
        if self.environment is None:
            raise ValidatorError("No validation environment configured.")
        version = _as_version(version)
        chain = self.chain_for(version)
        params = (params or ValidationParameters()).resolve(
            merge_parameters(spec.parameters for spec in chain)
        )
        parts = urlsplit(url)
        if not parts.scheme or not parts.netloc:
            raise InvalidEndpoint(f"Malformed endpoint URL: {url!r}")

        env = self.environment
        results: list[ValidationStepWithStatus] = []
        discovered: dict = {}
        for spec in chain:
            state = SuiteState(url=url, version=version, parameters=params, discovered=dict(discovered))
            ctx = StepContext(
                api_info=spec.api_info,
                state=state,
                catalogue=env.catalogue,
                credentials=env.credentials,
                transport=env.transport,
                builder=RequestBuilder(
                    env.catalogue, env.credentials, spec.api_info.api_name, spec.api_info.endpoint
                ),
                timeout=env.timeout,
            )
            results.extend(ValidationSuite(spec, ctx, reporter).run(security_filter))
            discovered = state.discovered
        return results


class ApiValidatorsManager:
    """Registry of all validators, keyed by API name and endpoint."""

    def __init__(self, environment: Optional[ValidationEnvironment] = None):
        self.environment = environment
        self._validators: dict[tuple[str, ApiEndpoint], ApiValidator] = {}

    def validator(self, api_name: str, endpoint: ApiEndpoint = ApiEndpoint.NONE) -> ApiValidator:
        """Get or create the validator of an API endpoint, for registration."""
        key = (api_name, endpoint)
        if key not in self._validators:
            self._validators[key] = ApiValidator(api_name, endpoint, self.environment)
        return self._validators[key]

    def validators(self) -> list[ApiValidator]:
        return sorted(self._validators.values(), key=lambda v: (v.api_name, v.endpoint.value))

    def get_api_validator(self, api_name: str, endpoint: ApiEndpoint) -> Optional[ApiValidator]:
        return self._validators.get((api_name, endpoint))

    def has_compatible_tests(self, api_name: str, endpoint: ApiEndpoint, version: VersionLike) -> bool:
        validator = self.get_api_validator(api_name, endpoint)
        return validator is not None and validator.compatible_version(version) is not None

    def get_parameters(
        self, api_name: str, endpoint: ApiEndpoint, version: VersionLike
    ) -> list[ValidationParameter]:
        if not self.has_compatible_tests(api_name, endpoint, version):
            return []
        return self.get_api_validator(api_name, endpoint).get_parameters(version)

    def validate(
        self,
        api_name: str,
        endpoint: ApiEndpoint,
        url: str,
        version: str,
        security: Optional[str] = None,
        params: Optional[dict[str, str]] = None,
        reporter: Optional[Reporter] = None,
    ) -> ValidationReport:
        """Check a validation request and run it.

        Raises:
            ValidatorError: If the request is rejected before any test is run.
        """
        security_filter = SecurityFilter.parse(security)
        requested = SemanticVersion.parse(version)
        validator = self.get_api_validator(api_name, endpoint)
        if validator is None:
            raise UnknownApi(f"No validator registered for {api_name!r} endpoint {endpoint.value!r}.")
        if not self.has_compatible_tests(api_name, endpoint, requested):
            raise NoCompatibleVersion(
                f"No tests for {api_name} {endpoint.value} version {requested}."
            )
        parameters = ValidationParameters(params).resolve(validator.get_parameters(requested))

        if reporter:
            reporter.on_run_start(validator.chain_for(requested)[0].api_info, url, str(requested))
        start_time = time.time()
        steps = validator.run_tests(url, requested, security_filter, parameters, reporter)
        report = ValidationReport(
            api_name=api_name,
            endpoint=endpoint,
            url=url,
            version=str(requested),
            security=str(security_filter),
            steps=steps,
            duration_seconds=time.time() - start_time,
        )
        _LOG.info("Validation of %s finished: %s", url, report.worst_status.value)
        if reporter:
            reporter.on_run_complete(report)
        return report


def build_default_manager(environment: Optional[ValidationEnvironment] = None) -> ApiValidatorsManager:
    """Create a manager with every built-in validator registered."""
    manager = ApiValidatorsManager(environment)
    register_all(manager)
    return manager
