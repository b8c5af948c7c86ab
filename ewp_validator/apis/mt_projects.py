"""MT Projects API v1.

Lists the Erasmus+ projects of an institution for one call year. Like MT
Institutions it is served by national ministries, so the PIC has to be
supplied as the ``pic`` parameter.
"""

from datetime import date

from ewp_validator.checks import FAKE_ID, parameters_200, parameters_error, select_parameter
from ewp_validator.models import ApiEndpoint, ValidatedApiInfo
from ewp_validator.parameters import ValidationParameter
from ewp_validator.steps import StepContext, ValidationStep
from ewp_validator.suite import SuiteSpec
from ewp_validator.verifiers import VerifierFactory

API_INFO_V1 = ValidatedApiInfo(
    api_name="mt-projects",
    endpoint=ApiEndpoint.NONE,
    response_element="mt-projects-response",
    response_namespace=(
        "https://github.com/erasmus-without-paper/ewp-specs-api-mt-projects/tree/stable-v1"
    ),
)

PARAMETERS = (
    ValidationParameter("pic").with_description("PIC of an institution with known projects."),
    ValidationParameter("call_year")
    .depends_on("pic")
    .with_description("Call year the projects are listed for. Defaults to the current year."),
)

projects = VerifierFactory(["project"])
project_pics = VerifierFactory(["project", "pic"])


def _combination_steps(ctx: StepContext) -> list[ValidationStep]:
    pic = ("pic", ctx.state["pic"])
    call_year = ("call_year", ctx.state["call_year"])

    return [
        parameters_200(
            "Request with known pic and call_year, expect 200 and non empty response.",
            [pic, call_year],
            projects.expect_response_to_be_not_empty(),
        ),
        parameters_200(
            "Request with known pic, call_year and invalid parameter, expect 200.",
            [pic, call_year, ("pic_param", FAKE_ID)],
            project_pics.expect_response_to_contain([ctx.state["pic"]]),
        ),
        parameters_error("Request with single incorrect parameter, expect 400.", [("pic_param", FAKE_ID)]),
        parameters_200(
            "Request with unknown pic parameter, expect 200 and empty response.",
            [("pic", FAKE_ID), call_year],
            projects.expect_response_to_be_empty(),
        ),
        parameters_error("Request without any parameter, expect 400.", []),
        parameters_error("Request without pic, expect 400.", [call_year]),
        parameters_error("Request without call_year, expect 400.", [pic]),
        parameters_error("Request with multiple pic parameters, expect 400.", [pic, pic, call_year]),
        parameters_error(
            "Request with multiple call_year parameters, expect 400.", [pic, call_year, call_year]
        ),
        parameters_error(
            "Request with invalid value of call_year, expect 400.", [pic, ("call_year", FAKE_ID)]
        ),
        parameters_error(
            "Request with call_year being a date, expect 400.", [pic, ("call_year", "2019-01-01")]
        ),
    ]


SUITE_V1 = SuiteSpec(
    name="mt-projects-v1",
    api_info=API_INFO_V1,
    combination_steps=_combination_steps,
    parameters=PARAMETERS,
    setup=(
        select_parameter(
            "Use the provided pic.",
            "pic",
            "pic",
            lambda ctx: None,
            "No pic provided. MT Projects tests need the PIC of an institution with projects.",
        ),
        select_parameter(
            "Select call_year.",
            "call_year",
            "call_year",
            lambda ctx: str(date.today().year),
            "No call_year available.",
        ),
    ),
)


def register(manager) -> None:
    manager.validator("mt-projects", ApiEndpoint.NONE).register("1.0.0", SUITE_V1)
