"""MT Institutions API v1.

The API is served by national ministries, so the PIC to test with cannot be
found in the catalogue and has to be supplied as the ``pic`` parameter.
"""

from datetime import date

from ewp_validator.checks import FAKE_ID, parameters_200, parameters_error, repeat, select_parameter
from ewp_validator.models import ApiEndpoint, ValidatedApiInfo
from ewp_validator.parameters import ValidationParameter
from ewp_validator.steps import StepContext, ValidationStep
from ewp_validator.suite import SuiteSpec
from ewp_validator.verifiers import VerifierFactory

API_INFO_V1 = ValidatedApiInfo(
    api_name="mt-institutions",
    endpoint=ApiEndpoint.NONE,
    response_element="mt-institutions-response",
    response_namespace=(
        "https://github.com/erasmus-without-paper/ewp-specs-api-mt-institutions/tree/stable-v1"
    ),
)

MAX_IDS = "max-ids"

PARAMETERS = (
    ValidationParameter("pic").with_description("PIC of an institution known to the ministry."),
    ValidationParameter("eche_at_date")
    .depends_on("pic")
    .with_description("Date the ECHE status is checked at. Defaults to today."),
)

pics = VerifierFactory(["hei", "pic"])


def _combination_steps(ctx: StepContext) -> list[ValidationStep]:
    pic = ctx.state["pic"]
    eche_at_date = ctx.state["eche_at_date"]
    at_date = [("eche_at_date", eche_at_date)]
    max_ids = ctx.state.max_ids(MAX_IDS)

    steps = [
        parameters_200(
            "Request with known pic and eche_at_date, expect 200 and non empty response.",
            [("pic", pic)] + at_date,
            pics.expect_response_to_be_equal([pic]),
        ),
        parameters_200(
            "Request with known pic, eche_at_date and invalid parameter, expect 200.",
            [("pic", pic)] + at_date + [("pic_param", pic)],
            pics.expect_response_to_be_equal([pic]),
        ),
        parameters_200(
            "Request with correct pic twice, expect 200 and two elements in response.",
            repeat("pic", pic, 2) + at_date,
            pics.expect_response_to_be_equal([pic, pic]),
        ),
        parameters_error("Request with single incorrect parameter, expect 400.", [("pic_param", FAKE_ID)]),
        parameters_200(
            "Request with unknown pic parameter, expect 200 and empty response.",
            [("pic", FAKE_ID)] + at_date,
            pics.expect_response_to_be_empty(),
        ),
        parameters_error("Request without any parameter, expect 400.", []),
        parameters_error(
            "Request with invalid value of eche_at_date, expect 400.",
            [("pic", pic), ("eche_at_date", FAKE_ID)],
        ),
        parameters_error(
            "Request with eche_at_date being a date with time, expect 400.",
            [("pic", pic), ("eche_at_date", "2004-02-12T15:19:21+01:00")],
        ),
        parameters_error(
            "Request with eche_at_date being a date in wrong format, expect 400.",
            [("pic", pic), ("eche_at_date", "05/29/2015")],
        ),
    ]
    if max_ids > 1:
        steps.append(
            parameters_200(
                "Request one known and one unknown pic, expect 200 and only one pic in response.",
                [("pic", pic), ("pic", FAKE_ID)] + at_date,
                pics.expect_response_to_be_equal([pic]),
            )
        )
    steps += [
        parameters_error("Request without pic, expect 400.", at_date),
        parameters_error("Request without eche_at_date, expect 400.", [("pic", pic)]),
        parameters_error(
            "Request more than <max-ids> known PICs, expect 400.",
            at_date + repeat("pic", pic, max_ids + 1),
        ),
        parameters_error(
            "Request more than <max-ids> unknown PICs, expect 400.",
            at_date + repeat("pic", FAKE_ID, max_ids + 1),
        ),
        parameters_200(
            "Request exactly <max-ids> known PICs, expect 200 and <max-ids> PICs in response.",
            at_date + repeat("pic", pic, max_ids),
            pics.expect_response_to_be_equal([pic] * max_ids),
        ),
    ]
    return steps


SUITE_V1 = SuiteSpec(
    name="mt-institutions-v1",
    api_info=API_INFO_V1,
    combination_steps=_combination_steps,
    parameters=PARAMETERS,
    setup=(
        select_parameter(
            "Use the provided pic.",
            "pic",
            "pic",
            lambda ctx: None,
            "No pic provided. MT Institutions tests need the PIC of a known institution.",
        ),
        select_parameter(
            "Select eche_at_date.",
            "eche_at_date",
            "eche_at_date",
            lambda ctx: date.today().isoformat(),
            "No eche_at_date available.",
        ),
    ),
)


def register(manager) -> None:
    manager.validator("mt-institutions", ApiEndpoint.NONE).register("1.0.0", SUITE_V1)
