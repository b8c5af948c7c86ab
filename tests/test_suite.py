"""Tests for the suite driver."""

from unittest.mock import Mock

import pytest

from ewp_validator.apis import institutions
from ewp_validator.checks import (
    FAKE_ID,
    catalogue_lookup,
    expect_https_url,
    parameters_200,
    unsupported_method,
)
from ewp_validator.models import Status
from ewp_validator.security import SecurityFilter
from ewp_validator.steps import RunState, StepResult, ValidationStep
from ewp_validator.suite import SuiteSpec, ValidationSuite
from ewp_validator.transport import Response

from fakes import INSTITUTIONS_URL, TESTED_HEI, TimeoutTransport, client_keys, default_services

HTTPS_STEP = expect_https_url().name
LOOKUP_STEP = catalogue_lookup().name
PUT_STEP = unsupported_method().name


def passing(name):
    return ValidationStep(name, lambda ctx: StepResult.success())


def aborting(name, reason="stop"):
    return ValidationStep(name, lambda ctx: StepResult.aborted(Status.NOTICE, reason))


def make_spec(steps=None, **options):
    """Institutions suite running the given steps for every combination."""
    return SuiteSpec(
        name="test-suite",
        api_info=institutions.API_INFO_V2,
        combination_steps=lambda ctx: list(steps or [passing("check")]),
        **options,
    )


@pytest.fixture
def suite(make_context):
    def make(spec, url=INSTITUTIONS_URL, reporter=None, **overrides):
        ctx = make_context(institutions.API_INFO_V2, url, **overrides)
        return ValidationSuite(spec, ctx, reporter)

    return make


class TestRunOrder:
    """Tests for the order in which steps are run and recorded."""

    def test_common_steps_then_combinations(self, suite):
        validation = suite(make_spec(setup=(passing("setup"),)))

        results = validation.run()

        names = [step.name for step in results]
        assert names == [
            HTTPS_STEP,
            LOOKUP_STEP,
            "setup",
            PUT_STEP,
            "check",
            PUT_STEP,
            "check",
        ]
        assert [step.combination for step in results[3:]] == [
            "GET HTTT", "GET HTTT", "POST HTTT", "POST HTTT"
        ]
        assert validation.state.run_state is RunState.COMPLETED

    def test_suite_level_steps_have_no_combination(self, suite):
        results = suite(make_spec(setup=(passing("setup"),))).run()
        assert [step.combination for step in results[:3]] == [None, None, None]

    def test_combination_steps_see_setup_findings(self, suite):
        def remember(ctx):
            ctx.state["hei_id"] = TESTED_HEI
            return StepResult.success()

        seen = []

        def combination_steps(ctx):
            seen.append((ctx.combination.marker, ctx.state["hei_id"]))
            return []

        spec = SuiteSpec(
            name="test-suite",
            api_info=institutions.API_INFO_V2,
            combination_steps=combination_steps,
            setup=(ValidationStep("remember", remember),),
        )

        suite(spec).run()

        assert seen == [("GET HTTT", TESTED_HEI), ("POST HTTT", TESTED_HEI)]

    def test_http_methods(self, suite):
        results = suite(make_spec(http_methods=("GET",))).run()
        assert {step.combination for step in results if step.combination} == {"GET HTTT"}

    def test_reporter_notified_of_every_step(self, suite):
        reporter = Mock()

        results = suite(make_spec(), reporter=reporter).run()

        assert reporter.on_step_complete.call_count == len(results)
        reporter.on_suite_abort.assert_not_called()

    def test_put_accepted(self, suite, transport):
        transport.services[INSTITUTIONS_URL].handle = lambda method, params, caller: Response(200)

        results = suite(make_spec()).run()

        put = next(step for step in results if step.name == PUT_STEP)
        assert put.status is Status.WARNING


class TestOnce:
    """Tests for suites run against a single combination."""

    def test_only_first_combination(self, suite):
        results = suite(make_spec(once=True)).run()

        assert [(step.name, step.combination) for step in results] == [("check", "GET HTTT")]

    def test_no_common_steps(self, suite, transport):
        suite(make_spec(once=True)).run()
        assert transport.sent == []


class TestAbort:
    """Tests for suites stopping early."""

    def test_remaining_steps_recorded_as_skipped(self, suite):
        reporter = Mock()
        validation = suite(
            make_spec([passing("first"), aborting("second", "No data."), passing("third")]),
            reporter=reporter,
        )

        results = validation.run()

        first_combination = [step for step in results if step.combination == "GET HTTT"]
        assert [step.name for step in first_combination] == [PUT_STEP, "first", "second", "third"]
        skipped = first_combination[-1]
        assert skipped.skipped is True
        assert skipped.status is Status.NOTICE
        assert "No data." in skipped.message
        assert validation.state.run_state is RunState.ABORTED
        reporter.on_suite_abort.assert_called_once_with("test-suite", "No data.")

    def test_later_combinations_recorded_as_not_run(self, suite, transport):
        results = suite(make_spec([aborting("stop", "No data.")])).run()

        [not_run] = [step for step in results if step.combination == "POST HTTT"]
        assert not_run.name == "test-suite"
        assert not_run.skipped is True
        assert not_run.status is Status.NOTICE
        assert not_run.message == "Skipped: suite aborted. No data."
        assert [request.method for request in transport.sent] == ["PUT"]

    def test_setup_abort(self, suite):
        validation = suite(make_spec(setup=(aborting("setup", "No HEI."), passing("more setup"))))

        results = validation.run()

        suite_level = [step for step in results if step.combination is None]
        assert [step.name for step in suite_level][-2:] == ["setup", "more setup"]
        not_run = [step for step in results if step.combination is not None]
        assert [(step.name, step.combination) for step in not_run] == [
            ("test-suite", "GET HTTT"),
            ("test-suite", "POST HTTT"),
        ]
        assert all(step.skipped and "No HEI." in step.message for step in not_run)

    def test_setup_abort_of_single_combination_suite(self, suite):
        results = suite(make_spec(setup=(aborting("setup"),), once=True)).run()

        assert [(step.name, step.combination) for step in results] == [
            ("setup", None),
            ("test-suite", "GET HTTT"),
        ]

    def test_unknown_url(self, suite):
        validation = suite(make_spec(), url="https://unknown.example.com/institutions")

        results = validation.run()

        assert results[1].name == LOOKUP_STEP
        assert results[1].status is Status.ERROR
        assert len(results) == 2
        assert validation.state.run_state is RunState.ABORTED

    def test_plain_http_url_is_not_fatal(self, suite):
        results = suite(make_spec(), url="http://ewp.uw.edu.pl/institutions").run()

        assert results[0].status is Status.FAILURE
        assert results[1].name == LOOKUP_STEP

    def test_fatal_error(self, suite):
        step = ValidationStep(
            "fatal", lambda ctx: StepResult.verdict(Status.ERROR, "broken"), fatal=True
        )
        validation = suite(make_spec([step, passing("after")]))

        results = validation.run()

        after = next(step for step in results if step.name == "after")
        assert after.skipped is True
        assert results[-1].combination == "POST HTTT"
        assert results[-1].skipped is True
        assert validation.state.run_state is RunState.ABORTED


class TestRequires:
    def test_missing_requirement(self, suite):
        reporter = Mock()
        validation = suite(make_spec(requires=("iia_id",)), reporter=reporter)

        results = validation.run()

        notice = next(step for step in results if step.name == "test-suite")
        assert notice.combination is None
        assert notice.status is Status.NOTICE
        assert "iia_id" in notice.message
        not_run = [step for step in results if step.combination is not None]
        assert [step.combination for step in not_run] == ["GET HTTT", "POST HTTT"]
        assert all(step.skipped and "iia_id" in step.message for step in not_run)
        assert validation.state.run_state is RunState.ABORTED
        reporter.on_suite_abort.assert_called_once()

    def test_requirement_found_earlier(self, suite):
        validation = suite(make_spec(requires=("iia_id",)))
        validation.state["iia_id"] = "iia-1"

        validation.run()

        assert validation.state.run_state is RunState.COMPLETED


class TestSecurityFilter:
    def test_matching_filter(self, suite):
        results = suite(make_spec()).run(SecurityFilter.parse("H***"))
        assert {step.combination for step in results if step.combination} == {"GET HTTT", "POST HTTT"}

    def test_no_matching_combination(self, suite):
        validation = suite(make_spec())

        results = validation.run(SecurityFilter.parse("S***"))

        assert results[-1].name == "test-suite"
        assert results[-1].status is Status.NOTICE
        assert "S***" in results[-1].message
        assert validation.state.run_state is RunState.COMPLETED


class TestTimeouts:
    def test_timeout_is_an_error_and_the_suite_continues(self, suite, catalogue, credentials):
        transport = TimeoutTransport(
            catalogue, default_services(), client_keys=client_keys(credentials), marker=FAKE_ID
        )
        steps = [
            parameters_200("unknown", [("hei_id", FAKE_ID)]),
            parameters_200("known", [("hei_id", TESTED_HEI)]),
        ]

        results = suite(make_spec(steps), transport=transport).run()

        by_name = {(step.name, step.combination): step for step in results}
        assert by_name[("unknown", "GET HTTT")].status is Status.ERROR
        assert by_name[("unknown", "GET HTTT")].message == "Request timed out."
        assert by_name[("known", "GET HTTT")].status is Status.SUCCESS
        assert by_name[("known", "POST HTTT")].status is Status.SUCCESS


class TestUnexpectedErrors:
    def test_step_raising_is_an_error(self, suite):
        def broken(ctx):
            raise KeyError("hei_id")

        results = suite(make_spec([ValidationStep("broken", broken), passing("after")])).run()

        broken_step = next(step for step in results if step.name == "broken")
        assert broken_step.status is Status.ERROR
        assert broken_step.message.startswith("Internal error")
        assert results[-1].name == "after"
        assert results[-1].status is Status.SUCCESS
