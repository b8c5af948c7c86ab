"""Institutions API v2."""

from ewp_validator.checks import (
    FAKE_ID,
    covered_hei,
    parameters_200,
    parameters_error,
    repeat,
    select_parameter,
)
from ewp_validator.models import ApiEndpoint, ValidatedApiInfo
from ewp_validator.steps import StepContext, ValidationStep
from ewp_validator.suite import SuiteSpec
from ewp_validator.verifiers import VerifierFactory

API_INFO_V2 = ValidatedApiInfo(
    api_name="institutions",
    endpoint=ApiEndpoint.NONE,
    response_element="institutions-response",
    response_namespace=(
        "https://github.com/erasmus-without-paper/ewp-specs-api-institutions/tree/stable-v2"
    ),
)

MAX_IDS = "max-hei-ids"

hei_ids = VerifierFactory(["hei", "hei-id"])


def _combination_steps(ctx: StepContext) -> list[ValidationStep]:
    hei_id = ctx.state["hei_id"]
    max_ids = ctx.state.max_ids(MAX_IDS)

    steps = [
        parameters_200(
            "Request for one of known HEI IDs, expect 200 OK.",
            [("hei_id", hei_id)],
            hei_ids.expect_response_to_be_equal([hei_id]),
        ),
    ]
    if max_ids > 1:
        steps.append(
            parameters_200(
                "Request one known and one unknown HEI ID, expect 200 and only one HEI in response.",
                [("hei_id", hei_id), ("hei_id", FAKE_ID)],
                hei_ids.expect_response_to_be_equal([hei_id]),
            )
        )
    steps += [
        parameters_200(
            "Request one unknown HEI ID, expect 200 and empty response.",
            [("hei_id", FAKE_ID)],
            hei_ids.expect_response_to_be_empty(),
        ),
        parameters_error("Request without HEI IDs, expect 400.", []),
        parameters_error(
            "Request more than <max-hei-ids> known HEIs, expect 400.",
            repeat("hei_id", hei_id, max_ids + 1),
        ),
        parameters_error(
            "Request more than <max-hei-ids> unknown HEIs, expect 400.",
            repeat("hei_id", FAKE_ID, max_ids + 1),
        ),
        parameters_200(
            "Request exactly <max-hei-ids> known HEIs, expect 200 and <max-hei-ids> HEIs in response.",
            repeat("hei_id", hei_id, max_ids),
            hei_ids.expect_response_to_be_equal([hei_id] * max_ids),
        ),
        parameters_error(
            "Request with single incorrect parameter, expect 400.",
            [("hei_id_param", hei_id)],
        ),
        parameters_200(
            "Request with additional parameter, expect 200 and one HEI in response.",
            [("hei_id", hei_id), ("hei_id_param", hei_id)],
            hei_ids.expect_response_to_be_equal([hei_id]),
        ),
    ]
    return steps


SUITE_V2 = SuiteSpec(
    name="institutions-v2",
    api_info=API_INFO_V2,
    combination_steps=_combination_steps,
    setup=(
        select_parameter(
            "Find a HEI covered by the endpoint.",
            None,
            "hei_id",
            covered_hei,
            "The catalogue does not list any HEI covered by this endpoint.",
        ),
    ),
)


def register(manager) -> None:
    manager.validator("institutions", ApiEndpoint.NONE).register("2.0.0", SUITE_V2)
