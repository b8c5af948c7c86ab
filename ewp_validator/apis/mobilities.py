"""Index endpoints of the mobility APIs.

Outgoing Mobilities and Outgoing Mobility Learning Agreements are served by
the sending HEI, Incoming Mobility ToRs by the receiving HEI. All three list
``omobility-id`` values filtered by the counterpart HEI, the receiving
academic year and ``modified_since``, so they share one suite layout.
"""

from dataclasses import dataclass

from ewp_validator.checks import (
    FAKE_ID,
    covered_hei,
    find_value,
    modified_since_tests,
    not_permitted_hei,
    only_if_verified,
    parameters_200,
    parameters_error,
    receiving_academic_year_tests,
    select_parameter,
)
from ewp_validator.models import ApiEndpoint, Status, ValidatedApiInfo
from ewp_validator.parameters import ValidationParameter
from ewp_validator.steps import StepContext, StepResult, ValidationStep
from ewp_validator.suite import SuiteSpec
from ewp_validator.verifiers import VerifierFactory

SENDING_HEI_ID = "sending_hei_id"
RECEIVING_HEI_ID = "receiving_hei_id"
OMOBILITY_ID = "omobility_id"
RECEIVING_ACADEMIC_YEAR_ID = "receiving_academic_year_id"

EMPTY_LISTING_MESSAGE = (
    "However we received an empty response, no omobility ids were returned. Some tests "
    "will be skipped. To perform more tests provide parameters that will allow us to "
    "receive omobility-ids."
)
EMPTY_LISTING_SKIP_REASON = "OMobilities list was empty."

omobility_ids = VerifierFactory(["omobility-id"])


def _index_info(api_name: str, response_element: str) -> ValidatedApiInfo:
    return ValidatedApiInfo(
        api_name=api_name,
        endpoint=ApiEndpoint.INDEX,
        response_element=response_element,
        response_namespace=(
            f"https://github.com/erasmus-without-paper/ewp-specs-api-{api_name}/blob/stable-v1/"
            f"endpoints/index-response.xsd"
        ),
    )


@dataclass(frozen=True)
class MobilityIndexLayout:
    """What differs between the mobility index endpoints.

    Args:
        api_info: The validated API
        own_parameter: Parameter naming the HEI that serves the API
        other_parameter: Parameter naming the counterpart HEI
        listing_status: Severity of an empty listing for a known HEI
    """

    api_info: ValidatedApiInfo
    own_parameter: str
    other_parameter: str
    listing_status: Status = Status.FAILURE

    @property
    def parameters(self) -> tuple[ValidationParameter, ...]:
        return (
            ValidationParameter(self.own_parameter).with_description(
                "HEI served by the tested endpoint."
            ),
            ValidationParameter(OMOBILITY_ID)
            .depends_on(self.own_parameter)
            .with_description("A mobility the endpoint lists for the HEI."),
            ValidationParameter(self.other_parameter)
            .depends_on(self.own_parameter)
            .with_description("Counterpart HEI of the selected mobility."),
            ValidationParameter(RECEIVING_ACADEMIC_YEAR_ID)
            .depends_on(self.own_parameter)
            .with_description("Receiving academic year of the selected mobility."),
        )

    def setup_steps(self, ctx: StepContext) -> list[ValidationStep]:
        parameters = ctx.state.parameters
        steps = []
        if parameters.is_provided(OMOBILITY_ID):
            steps.append(_copy_parameter(OMOBILITY_ID))
        else:
            steps.append(
                find_value(
                    "Find omobility-id to work with.",
                    OMOBILITY_ID,
                    ["omobility-id"],
                    lambda state: [(self.own_parameter, state[self.own_parameter])],
                    "The index endpoint doesn't report any omobility-id, some tests will be skipped.",
                    required=False,
                )
            )
        for name in (self.other_parameter, RECEIVING_ACADEMIC_YEAR_ID):
            if parameters.is_provided(name):
                steps.append(_copy_parameter(name))
        return steps

    def steps(self, ctx: StepContext) -> list[ValidationStep]:
        state = ctx.state
        own_name, other_name = self.own_parameter, self.other_parameter
        own = (own_name, state[own_name])
        omobility_id = state.get(OMOBILITY_ID)
        known = [omobility_id] if omobility_id else None

        listing = omobility_ids.expect_response_to_be_not_empty()
        listing.set_custom_error_message(EMPTY_LISTING_MESSAGE)
        if_listed = only_if_verified(listing, EMPTY_LISTING_SKIP_REASON)

        steps = [
            parameters_200(
                f"Request one known {own_name}, expect 200 OK.",
                [own],
                listing,
                failure_status=self.listing_status,
            ),
            parameters_error(f"Request without {own_name}, expect 400.", []),
            parameters_error(f"Request with unknown {own_name}, expect 400.", [(own_name, FAKE_ID)]),
            parameters_error(f"Request with multiple {own_name} parameters, expect 400.", [own, own]),
            parameters_200(
                f"Request with known {own_name} and unknown {other_name}, "
                f"expect 200 OK and empty response.",
                [own, (other_name, FAKE_ID)],
                omobility_ids.expect_response_to_be_empty(),
                skip_reason=if_listed,
            ),
        ]
        if known:
            steps.append(
                parameters_200(
                    f"Request known {own_name}, expect 200 OK and specific omobility in response.",
                    [own],
                    omobility_ids.expect_response_to_contain(known),
                )
            )
        if other_name in state:
            other = (other_name, state[other_name])
            steps += [
                parameters_200(
                    f"Request with known {own_name} and {other_name}, "
                    f"expect 200 OK and non-empty response.",
                    [own, other],
                    omobility_ids.expect_response_to_contain(known)
                    if known
                    else omobility_ids.expect_response_to_be_not_empty(),
                    skip_reason=if_listed,
                ),
                parameters_200(
                    f"Request with known {own_name} and {other_name} twice, "
                    f"expect 200 OK and non-empty response.",
                    [own, other, other],
                    omobility_ids.expect_response_to_be_not_empty(),
                    skip_reason=if_listed,
                ),
            ]

        steps += receiving_academic_year_tests(
            f"with known {own_name}",
            [own],
            omobility_ids,
            academic_year=state.get(RECEIVING_ACADEMIC_YEAR_ID),
            expected_ids=known,
            skip_reason=if_listed,
        )
        steps += modified_since_tests(
            f"with known {own_name}",
            [own],
            omobility_ids,
            skip_reason=if_listed,
            expected_ids=known,
        )

        # Am I allowed to see mobilities of others?
        not_permitted = not_permitted_hei(ctx)
        if not_permitted is not None:
            steps.append(
                parameters_200(
                    f"Request with known {own_name} and {other_name} valid but not covered by "
                    f"the validator, expect empty response.",
                    [own, (other_name, not_permitted)],
                    omobility_ids.expect_response_to_be_empty(),
                    failure_status=Status.WARNING,
                    skip_reason=if_listed,
                )
            )
        # Are others able to see mobilities of mine?
        steps.append(
            parameters_200(
                f"Request one known {own_name} as other EWP participant, "
                f"expect 200 OK and empty response.",
                [own],
                omobility_ids.expect_response_to_be_empty(),
                failure_status=Status.FAILURE,
                as_other_participant=True,
                skip_reason=if_listed,
            )
        )
        return steps

    def suites(self, name: str) -> tuple[SuiteSpec, SuiteSpec]:
        setup = SuiteSpec(
            name=f"{name}-setup",
            api_info=self.api_info,
            combination_steps=self.setup_steps,
            setup=(
                select_parameter(
                    "Find a HEI covered by the endpoint.",
                    self.own_parameter,
                    self.own_parameter,
                    covered_hei,
                    "The catalogue does not list any HEI covered by this endpoint.",
                ),
            ),
            parameters=self.parameters,
            once=True,
        )
        main = SuiteSpec(
            name=name,
            api_info=self.api_info,
            combination_steps=self.steps,
            requires=(self.own_parameter,),
        )
        return setup, main


def _copy_parameter(name: str) -> ValidationStep:
    def action(ctx: StepContext) -> StepResult:
        ctx.state[name] = ctx.state.parameters.value_of(name)
        return StepResult.success()

    return ValidationStep(f"Use the provided {name}.", action)


OMOBILITIES_INDEX_V1 = MobilityIndexLayout(
    api_info=_index_info("omobilities", "omobilities-index-response"),
    own_parameter=SENDING_HEI_ID,
    other_parameter=RECEIVING_HEI_ID,
)

OMOBILITY_LAS_INDEX_V1 = MobilityIndexLayout(
    api_info=_index_info("omobility-las", "omobility-las-index-response"),
    own_parameter=SENDING_HEI_ID,
    other_parameter=RECEIVING_HEI_ID,
)

IMOBILITY_TORS_INDEX_V1 = MobilityIndexLayout(
    api_info=_index_info("imobility-tors", "imobility-tors-index-response"),
    own_parameter=RECEIVING_HEI_ID,
    other_parameter=SENDING_HEI_ID,
    listing_status=Status.NOTICE,
)


def register(manager) -> None:
    for layout, name in (
        (OMOBILITIES_INDEX_V1, "omobilities-index-v1"),
        (OMOBILITY_LAS_INDEX_V1, "omobility-las-index-v1"),
        (IMOBILITY_TORS_INDEX_V1, "imobility-tors-index-v1"),
    ):
        validator = manager.validator(layout.api_info.api_name, ApiEndpoint.INDEX)
        for spec in layout.suites(name):
            validator.register("1.0.0", spec)
