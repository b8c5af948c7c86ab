"""IIAs API, index and get endpoints of v2 and the index endpoint of v6.

Each endpoint runs a setup suite first. It runs once, with the first
testable security combination, and finds the data the main suite tests with:
an IIA of a covered HEI, its partner and the academic years it covers. The
operator can supply these instead as parameters.
"""

from logging import getLogger
from typing import Optional

from ewp_validator.checks import (
    FAKE_ID,
    api_url_for_hei,
    covered_hei,
    exchange,
    find_value,
    modified_since_tests,
    parameters_200,
    parameters_error,
    receiving_academic_year_tests,
    repeat,
    select_parameter,
)
from ewp_validator.documents import SchemaMismatch, parse_response, select_elements, select_values
from ewp_validator.models import ApiEndpoint, Status, ValidatedApiInfo
from ewp_validator.parameters import ValidationParameter
from ewp_validator.steps import StepContext, StepResult, ValidationStep
from ewp_validator.suite import SuiteSpec
from ewp_validator.verifiers import VerifierFactory

_LOG = getLogger(__name__)

_NAMESPACE = "https://github.com/erasmus-without-paper/ewp-specs-api-iias/blob/stable-v2/endpoints/"
_NAMESPACE_V6 = "https://github.com/erasmus-without-paper/ewp-specs-api-iias/blob/stable-v6/endpoints/"

INDEX_API_INFO_V2 = ValidatedApiInfo(
    api_name="iias",
    endpoint=ApiEndpoint.INDEX,
    response_element="iias-index-response",
    response_namespace=_NAMESPACE + "index-response.xsd",
)

GET_API_INFO_V2 = ValidatedApiInfo(
    api_name="iias",
    endpoint=ApiEndpoint.GET,
    response_element="iias-get-response",
    response_namespace=_NAMESPACE + "get-response.xsd",
)

INDEX_API_INFO_V6 = ValidatedApiInfo(
    api_name="iias",
    endpoint=ApiEndpoint.INDEX,
    response_element="iias-index-response",
    response_namespace=_NAMESPACE_V6 + "index-response.xsd",
)

# Only used by the v6 index setup, which reads the partner of an IIA.
GET_API_INFO_V6 = ValidatedApiInfo(
    api_name="iias",
    endpoint=ApiEndpoint.GET,
    response_element="iias-get-response",
    response_namespace=_NAMESPACE_V6 + "get-response.xsd",
)

HEI_ID = "hei_id"
IIA_ID = "iia_id"
PARTNER_HEI_ID = "partner_hei_id"
RECEIVING_ACADEMIC_YEAR_ID = "receiving_academic_year_id"

MOBILITY_SPECS = (
    "student-studies-mobility-spec",
    "student-traineeship-mobility-spec",
    "staff-teacher-mobility-spec",
    "staff-training-mobility-spec",
)

INDEX_PARAMETERS = (
    ValidationParameter(HEI_ID).with_description("HEI whose IIAs are listed."),
    ValidationParameter(IIA_ID)
    .depends_on(HEI_ID)
    .blocked_by(PARTNER_HEI_ID)
    .with_description(
        "This parameter is used to fetch partner_hei_id and receiving_academic_year_id "
        "using GET endpoint."
    ),
    ValidationParameter(PARTNER_HEI_ID).depends_on(HEI_ID).blocked_by(IIA_ID),
    ValidationParameter(RECEIVING_ACADEMIC_YEAR_ID)
    .depends_on(HEI_ID, PARTNER_HEI_ID)
    .blocked_by(IIA_ID),
)

GET_PARAMETERS = (
    ValidationParameter(HEI_ID).with_description("HEI whose IIA is fetched."),
    ValidationParameter(IIA_ID).depends_on(HEI_ID),
)

iia_ids = VerifierFactory(["iia-id"])
get_iia_ids = VerifierFactory(["iia", "partner", "iia-id"])
get_iias = VerifierFactory(["iia"])


def select_hei_step() -> ValidationStep:
    return select_parameter(
        "Find a HEI covered by the endpoint.",
        HEI_ID,
        "hei_id",
        covered_hei,
        "The catalogue does not list any HEI covered by this endpoint.",
    )


def find_iia_id_step(url=None, api_info: Optional[ValidatedApiInfo] = None) -> ValidationStep:
    return find_value(
        "Find iia-id to work with.",
        "iia_id",
        ["iia-id"],
        lambda state: [("hei_id", state["hei_id"])],
        "We tried to find iia-id to perform tests on, but index endpoint doesn't report "
        "any iia-id, cannot continue tests.",
        url=url,
        api_info=api_info,
    )


def provided_iia_id_step() -> ValidationStep:
    return select_parameter(
        "Use the provided iia_id.", IIA_ID, "iia_id", lambda ctx: None, "No iia_id provided."
    )


def _abort(message: str, **exchanged) -> StepResult:
    return StepResult.aborted(Status.NOTICE, f"{message} Consult tests for 'get' endpoint.", **exchanged)


def fetch_iia_info_step(get_info: ValidatedApiInfo = GET_API_INFO_V2) -> ValidationStep:
    """Use the get endpoint to learn the partner and academic years of the selected IIA."""

    def action(ctx: StepContext) -> StepResult:
        state = ctx.state
        request, response, early = exchange(
            ctx,
            [("hei_id", state["hei_id"]), ("iia_id", state["iia_id"])],
            url=state["get_url"],
            api_info=get_info,
        )
        if early is not None:
            outcome = early.outcome
            return StepResult.aborted(
                outcome.status,
                outcome.message,
                request=request,
                response=response,
                skipped=outcome.skipped,
            )
        exchanged = {"request": request, "response": response}
        if response.status_code != 200:
            return _abort(f"HTTP 200 expected, but {response.status_code} received.", **exchanged)
        try:
            document = parse_response(response.body, get_info)
        except SchemaMismatch:
            return _abort(
                "Received 200 OK but the response was empty or didn't contain correct "
                "get-response. Tests cannot be continued.",
                **exchanged,
            )

        iias = select_elements(document, ["iia"])
        if not iias:
            return _abort(
                "Received 200 OK but the response did not contain any IIA, but we requested one.",
                **exchanged,
            )
        partners = [select_values(partner, ["hei-id"]) for partner in select_elements(iias[0], ["partner"])]
        partner_hei_ids = [values[0] for values in partners if values]
        if len(partner_hei_ids) < 2:
            return _abort("Received 200 OK but the IIA has less than two partners.", **exchanged)
        if partner_hei_ids[0] != state["hei_id"]:
            return _abort(
                "Received 200 OK but <hei-id> of first <partner> was different than we requested.",
                **exchanged,
            )

        years = []
        for spec in MOBILITY_SPECS:
            for year in select_values(iias[0], ["cooperation-conditions", spec, "receiving-academic-year-id"]):
                if year not in years:
                    years.append(year)
        state["partner_hei_id"] = partner_hei_ids[1]
        state["receiving_academic_year_ids"] = years
        _LOG.info("Selected IIA %s with partner %s", state["iia_id"], partner_hei_ids[1])
        return StepResult.success(**exchanged)

    return ValidationStep("Use 'get' endpoint to retrieve info about selected IIA.", action)


def use_provided_partner_step() -> ValidationStep:
    def action(ctx: StepContext) -> StepResult:
        state = ctx.state
        state["partner_hei_id"] = state.parameters.value_of(PARTNER_HEI_ID)
        year = state.parameters.value_of(RECEIVING_ACADEMIC_YEAR_ID)
        state["receiving_academic_year_ids"] = [year] if year else []
        return StepResult.success()

    return ValidationStep("Use the provided partner_hei_id.", action)


def _index_setup_steps(get_info: ValidatedApiInfo, major: int):
    """Setup steps reading IIA details from the get endpoint of the same major version."""

    def combination_steps(ctx: StepContext) -> list[ValidationStep]:
        if ctx.state.parameters.is_provided(PARTNER_HEI_ID):
            return [use_provided_partner_step()]
        return [
            provided_iia_id_step() if ctx.state.parameters.is_provided(IIA_ID) else find_iia_id_step(),
            api_url_for_hei(
                "Retrieving 'get' endpoint url from catalogue.",
                "hei_id",
                "iias",
                ApiEndpoint.GET,
                "get_url",
                "Couldn't find 'get' endpoint url in the catalogue. Is manifest correct?",
                major=major,
            ),
            fetch_iia_info_step(get_info),
        ]

    return combination_steps


def _index_steps(ctx: StepContext) -> list[ValidationStep]:
    state = ctx.state
    hei = ("hei_id", state["hei_id"])
    partner = ("partner_hei_id", state["partner_hei_id"])
    known = [state["iia_id"]] if "iia_id" in state else None
    years = state.get("receiving_academic_year_ids") or []

    def listing():
        if known:
            return iia_ids.expect_response_to_contain(known)
        return iia_ids.expect_response_to_be_not_empty()

    return [
        parameters_200(
            "Request for IIAs of known hei_id, expect 200 OK and non-empty response.",
            [hei],
            listing(),
        ),
        parameters_error("Request without hei_id, expect 400.", []),
        parameters_error("Request with unknown hei_id, expect 400.", [("hei_id", FAKE_ID)]),
        parameters_error("Request with multiple hei_id parameters, expect 400.", [hei, hei]),
        parameters_200(
            "Request with known hei_id and partner_hei_id, expect 200 OK and non-empty response.",
            [hei, partner],
            listing(),
        ),
        parameters_200(
            "Request with known hei_id and unknown partner_hei_id, expect 200 OK and empty response.",
            [hei, ("partner_hei_id", FAKE_ID)],
            iia_ids.expect_response_to_be_empty(),
        ),
        parameters_error(
            "Request with multiple partner_hei_id parameters, expect 400.", [hei, partner, partner]
        ),
        *receiving_academic_year_tests(
            "with known hei_id and partner_hei_id",
            [hei, partner],
            iia_ids,
            academic_year=years[0] if years else None,
            expected_ids=known,
        ),
        *modified_since_tests("with known hei_id", [hei], iia_ids, expected_ids=known),
        parameters_200(
            "Request with known hei_id as other EWP participant, expect 200 OK and empty response.",
            [hei],
            iia_ids.expect_response_to_be_empty(),
            failure_status=Status.FAILURE,
            as_other_participant=True,
        ),
    ]


def _get_setup_steps(ctx: StepContext) -> list[ValidationStep]:
    if ctx.state.parameters.is_provided(IIA_ID):
        return [provided_iia_id_step()]
    return [
        api_url_for_hei(
            "Retrieving 'index' endpoint url from catalogue.",
            "hei_id",
            "iias",
            ApiEndpoint.INDEX,
            "index_url",
            "Couldn't find 'index' endpoint url in the catalogue. Is manifest correct?",
            major=2,
        ),
        find_iia_id_step(url=lambda state: state["index_url"], api_info=INDEX_API_INFO_V2),
    ]


def _get_steps(ctx: StepContext) -> list[ValidationStep]:
    state = ctx.state
    hei_id = state["hei_id"]
    iia_id = state["iia_id"]
    hei = ("hei_id", hei_id)
    max_ids = state.max_ids("max-iia-ids")

    steps = [
        parameters_200(
            "Request one known iia_id, expect 200 OK and the IIA in response.",
            [hei, ("iia_id", iia_id)],
            get_iia_ids.expect_response_to_contain([iia_id]),
        ),
        parameters_200(
            "Request one unknown iia_id, expect 200 OK and empty response.",
            [hei, ("iia_id", FAKE_ID)],
            get_iias.expect_response_to_be_empty(),
        ),
        parameters_error("Request without hei_id, expect 400.", [("iia_id", iia_id)]),
        parameters_error("Request without iia_id and iia_code, expect 400.", [hei]),
        parameters_error(
            "Request with unknown hei_id, expect 400.", [("hei_id", FAKE_ID), ("iia_id", iia_id)]
        ),
        parameters_error(
            "Request with multiple hei_id parameters, expect 400.", [hei, hei, ("iia_id", iia_id)]
        ),
        parameters_error(
            "Request with both iia_id and iia_code, expect 400.",
            [hei, ("iia_id", iia_id), ("iia_code", FAKE_ID)],
        ),
        parameters_error(
            "Request more than <max-iia-ids> known iia_ids, expect 400.",
            [hei] + repeat("iia_id", iia_id, max_ids + 1),
        ),
        parameters_200(
            "Request exactly <max-iia-ids> known iia_ids, expect 200 OK and non-empty response.",
            [hei] + repeat("iia_id", iia_id, max_ids),
            get_iia_ids.expect_response_to_contain([iia_id]),
        ),
    ]
    if max_ids > 1:
        steps.append(
            parameters_200(
                "Request one known and one unknown iia_id, expect 200 OK and the known IIA in response.",
                [hei, ("iia_id", iia_id), ("iia_id", FAKE_ID)],
                get_iia_ids.expect_response_to_contain([iia_id]),
            )
        )
    steps.append(
        parameters_200(
            "Request one known iia_id as other EWP participant, expect 200 OK and empty response.",
            [hei, ("iia_id", iia_id)],
            get_iias.expect_response_to_be_empty(),
            as_other_participant=True,
        )
    )
    return steps


INDEX_SETUP_V2 = SuiteSpec(
    name="iias-index-setup-v2",
    api_info=INDEX_API_INFO_V2,
    combination_steps=_index_setup_steps(GET_API_INFO_V2, 2),
    setup=(select_hei_step(),),
    parameters=INDEX_PARAMETERS,
    once=True,
)

INDEX_SUITE_V2 = SuiteSpec(
    name="iias-index-v2",
    api_info=INDEX_API_INFO_V2,
    combination_steps=_index_steps,
    requires=("hei_id", "partner_hei_id"),
)

INDEX_SETUP_V6 = SuiteSpec(
    name="iias-index-setup-v6",
    api_info=INDEX_API_INFO_V6,
    combination_steps=_index_setup_steps(GET_API_INFO_V6, 6),
    setup=(select_hei_step(),),
    parameters=INDEX_PARAMETERS,
    once=True,
)

INDEX_SUITE_V6 = SuiteSpec(
    name="iias-index-v6",
    api_info=INDEX_API_INFO_V6,
    combination_steps=_index_steps,
    requires=("hei_id", "partner_hei_id"),
)

GET_SETUP_V2 = SuiteSpec(
    name="iias-get-setup-v2",
    api_info=GET_API_INFO_V2,
    combination_steps=_get_setup_steps,
    setup=(select_hei_step(),),
    parameters=GET_PARAMETERS,
    once=True,
)

GET_SUITE_V2 = SuiteSpec(
    name="iias-get-v2",
    api_info=GET_API_INFO_V2,
    combination_steps=_get_steps,
    requires=("hei_id", "iia_id"),
)


def register(manager) -> None:
    index = manager.validator("iias", ApiEndpoint.INDEX)
    index.register("2.0.0", INDEX_SETUP_V2).register("2.0.0", INDEX_SUITE_V2)
    index.register("6.0.0", INDEX_SETUP_V6).register("6.0.0", INDEX_SUITE_V6)
    manager.validator("iias", ApiEndpoint.GET).register("2.0.0", GET_SETUP_V2).register(
        "2.0.0", GET_SUITE_V2
    )
