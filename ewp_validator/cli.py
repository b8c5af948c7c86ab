"""Command-line interface for the EWP API validator.

Provides argument parsing and main entry point for validating an endpoint
from the command line.
"""

import argparse
import logging
import sys
from typing import Optional

from ewp_validator.catalogue import StaticCatalogue, implemented_apis_count
from ewp_validator.config import ConfigError, build_credentials, load_settings
from ewp_validator.models import ApiEndpoint, ValidatedApiInfo, ValidationReport, ValidatorError
from ewp_validator.reporters import ConsoleReporter, JsonReporter, Reporter
from ewp_validator.transport import HttpTransport
from ewp_validator.validator import ApiValidatorsManager, ValidationEnvironment, build_default_manager

_LOG = logging.getLogger(__name__)


class CompositeReporter(Reporter):
    """Reporter that delegates to multiple reporters.

    Allows using both ConsoleReporter and JsonReporter simultaneously.
    """

    def __init__(self, reporters: list[Reporter]):
        self._reporters = reporters

    def on_run_start(self, api_info: ValidatedApiInfo, url: str, version: str) -> None:
        """Delegate to all reporters."""
        for reporter in self._reporters:
            reporter.on_run_start(api_info, url, version)

    def on_step_complete(self, step) -> None:
        """Delegate to all reporters."""
        for reporter in self._reporters:
            reporter.on_step_complete(step)

    def on_suite_abort(self, suite_name: str, reason: str) -> None:
        """Delegate to all reporters."""
        for reporter in self._reporters:
            reporter.on_suite_abort(suite_name, reason)

    def on_run_complete(self, report: ValidationReport) -> None:
        """Delegate to all reporters."""
        for reporter in self._reporters:
            reporter.on_run_complete(report)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="ewp-validator",
        description="Validate an EWP API implementation against the EWP specifications",
    )

    parser.add_argument("--api", help="Name of the validated API, e.g. iias")
    parser.add_argument(
        "--endpoint",
        default="",
        help="Endpoint of the validated API, e.g. index or get (default: none)",
    )
    parser.add_argument("--version", help="Version the endpoint implements, e.g. 2.0.0")
    parser.add_argument("--url", help="URL of the validated endpoint")
    parser.add_argument(
        "--security",
        metavar="MARKER",
        help="Security methods to test, e.g. SHTT; '*' matches any method (default: all)",
    )
    parser.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Parameter for the tests, may be repeated",
    )

    parser.add_argument(
        "-c", "--config",
        default="config.json",
        help="Path to configuration file (default: config.json)",
    )
    parser.add_argument(
        "--catalogue",
        metavar="PATH",
        help="Catalogue JSON file, overrides the configured one",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress per-step output, show only summary",
    )
    parser.add_argument(
        "-j", "--json-output",
        metavar="PATH",
        help="Write JSON results to file",
    )
    parser.add_argument(
        "--github-actions",
        action="store_true",
        help="Enable GitHub Actions output mode",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase logging verbosity, may be repeated",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List the available validators and their parameters",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Show how many hosts and institutions implement each API in the catalogue",
    )

    return parser.parse_args(argv)


def configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def parse_params(raw: list[str]) -> dict[str, str]:
    """Parse NAME=VALUE pairs.

    Raises:
        ValueError: If an item has no '=' or an empty name.
    """
    params = {}
    for item in raw:
        name, separator, value = item.partition("=")
        if not separator or not name.strip():
            raise ValueError(f"Expected NAME=VALUE, got {item!r}")
        params[name.strip()] = value
    return params


def create_reporters(args: argparse.Namespace) -> list[Reporter]:
    """Create reporters based on command-line arguments.

    Args:
        args: Parsed command-line arguments

    Returns:
        List of configured reporters
    """
    reporters: list[Reporter] = [ConsoleReporter(quiet=args.quiet)]

    if args.json_output or args.github_actions:
        reporters.append(JsonReporter(
            output_path=args.json_output,
            github_output=args.github_actions,
        ))

    return reporters


def list_validators(manager: ApiValidatorsManager) -> None:
    for validator in manager.validators():
        endpoint = validator.endpoint.value or "-"
        for version in validator.versions:
            print(f"{validator.api_name} {endpoint} {version}")
            for parameter in validator.get_parameters(version):
                line = f"    {parameter.name}"
                if parameter.dependencies:
                    line += f" (requires {', '.join(parameter.dependencies)})"
                if parameter.description:
                    line += f": {parameter.description}"
                print(line)


def print_catalogue_stats(catalogue: StaticCatalogue) -> None:
    for count in implemented_apis_count(catalogue):
        for version in sorted(count.hosts_by_version):
            hosts = len(count.hosts_by_version[version])
            heis = len(count.heis_by_version[version])
            print(f"{count.name} {version}: {hosts} host(s), {heis} HEI(s)")


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code: 0 when nothing is worse than WARNING, 1 for failures or
        errors found in the endpoint, 2 for configuration or request errors
    """
    args = parse_args(argv)
    configure_logging(args.verbose)

    if args.list:
        list_validators(build_default_manager(None))
        return 0

    missing = [flag for flag in ("api", "version", "url") if not getattr(args, flag)]
    if missing and not args.stats:
        print(f"Missing required options: {', '.join('--' + m for m in missing)}", file=sys.stderr)
        return 2

    try:
        params = parse_params(args.param)
        endpoint = ApiEndpoint.from_name(args.endpoint)
    except ValueError as e:
        print(f"Invalid arguments: {e}", file=sys.stderr)
        return 2

    # Load configuration
    try:
        settings = load_settings(args.config)
        catalogue_path = args.catalogue or settings.catalogue_path
        if not catalogue_path:
            raise ConfigError("No catalogue configured. Use --catalogue or set catalogue_path.")
        catalogue = StaticCatalogue.load(catalogue_path)
        if args.stats:
            print_catalogue_stats(catalogue)
            return 0
        credentials = build_credentials(settings)
    except ValidatorError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    reporters = create_reporters(args)
    reporter = reporters[0] if len(reporters) == 1 else CompositeReporter(reporters)

    transport = HttpTransport()
    environment = ValidationEnvironment(catalogue, credentials, transport, settings.timeout_seconds)
    try:
        report = build_default_manager(environment).validate(
            args.api,
            endpoint,
            args.url,
            args.version,
            security=args.security,
            params=params,
            reporter=reporter,
        )
    except ValidatorError as e:
        print(f"Request rejected: {e}", file=sys.stderr)
        return 2
    finally:
        transport.close()

    return 0 if report.passed else 1


if __name__ == "__main__":
    sys.exit(main())
