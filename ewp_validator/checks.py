"""Reusable validation steps.

Each function returns a :class:`ValidationStep` whose action sends one
request (using the combination the step runs under) and judges the
response. Parameters may be given as a list of ``(name, value)`` pairs or as
a callable receiving the suite state, for values discovered at run time.
"""

from datetime import datetime, timedelta, timezone
from logging import getLogger
from typing import Callable, Iterable, Optional, Sequence, Union
from urllib.parse import urlsplit

from ewp_validator.credentials import NoUsableCredential
from ewp_validator.documents import (
    SchemaMismatch,
    is_error_response,
    parse_response,
    select_values,
)
from ewp_validator.http_signature import verify_response
from ewp_validator.models import Status, ValidatedApiInfo
from ewp_validator.steps import (
    TIMEOUT_MESSAGE,
    SkipCheck,
    StepContext,
    StepResult,
    SuiteState,
    ValidationStep,
)
from ewp_validator.transport import Request, RequestTimeout, Response, TransportError
from ewp_validator.verifiers import Verifier, VerifierFactory

_LOG = getLogger(__name__)

ParamPairs = Sequence[tuple[str, str]]
Params = Union[ParamPairs, Callable[[SuiteState], ParamPairs]]
UrlSource = Union[None, str, Callable[[SuiteState], str]]

FAKE_ID = "1234567890-fake-id"
MODIFIED_SINCE_PAST = "2004-02-12T15:19:21+01:00"
UNKNOWN_ACADEMIC_YEAR = "1800/1801"


def _params(params: Params, state: SuiteState) -> list[tuple[str, str]]:
    return list(params(state) if callable(params) else params)


def _url(url: UrlSource, ctx: StepContext) -> str:
    if url is None:
        return ctx.combination.url
    return url(ctx.state) if callable(url) else url


def repeat(name: str, value: str, times: int) -> list[tuple[str, str]]:
    return [(name, value)] * times


def exchange(
    ctx: StepContext,
    params: ParamPairs,
    url: Optional[str] = None,
    api_info: Optional[ValidatedApiInfo] = None,
    method: Optional[str] = None,
    as_other_participant: bool = False,
) -> tuple[Optional[Request], Optional[Response], Optional[StepResult]]:
    """Build and send one request using the step's combination.

    Returns:
        Tuple of (request, response, early_result). When ``early_result`` is
        set the step must return it as is: the request could not be built,
        the call failed, or the server authentication was wrong.
    """
    combination = ctx.combination
    info = api_info or ctx.api_info
    builder = ctx.builder.for_endpoint(info.api_name, info.endpoint)
    target = url or combination.url

    try:
        request = builder.build(
            target,
            method or combination.http_method,
            params,
            combination.security,
            as_other_participant=as_other_participant,
        )
    except NoUsableCredential as e:
        return None, None, StepResult.skip(str(e))
    if request is None:
        return None, None, StepResult.skip(
            f"Couldn't find {info.display_name} endpoint supporting "
            f"{combination.security} in the catalogue."
        )

    try:
        response = ctx.transport.send(request, ctx.timeout)
    except RequestTimeout:
        return request, None, StepResult.verdict(
            Status.ERROR, TIMEOUT_MESSAGE, request=request
        )
    except TransportError as e:
        return request, None, StepResult.verdict(
            Status.ERROR, f"Internal error: couldn't perform the request. {e}", request=request
        )

    if request.expect_signed_response:
        entry = ctx.catalogue.api_entry_for_url(target, info.api_name, info.endpoint)
        keys = []
        for hei_id in entry.hei_ids if entry else []:
            keys.extend(ctx.catalogue.public_keys_of(hei_id))
        problem = verify_response(response.headers, response.body, request.request_id, keys)
        if problem:
            return request, response, StepResult.verdict(
                Status.FAILURE,
                f"Server authentication failed: {problem}",
                request=request,
                response=response,
            )
    return request, response, None


def _status_mismatch(expected: Iterable[int], response: Response) -> str:
    expected_text = " or ".join(str(code) for code in expected)
    return f"HTTP {expected_text} expected, but {response.status_code} received."


def parameters_200(
    name: str,
    params: Params,
    verifier: Optional[Verifier] = None,
    failure_status: Optional[Status] = None,
    skip_reason: Optional[SkipCheck] = None,
    as_other_participant: bool = False,
    url: UrlSource = None,
    api_info: Optional[ValidatedApiInfo] = None,
) -> ValidationStep:
    """Expect HTTP 200 and a valid response accepted by ``verifier``.

    A verifier mismatch is reported with ``failure_status`` when given, else
    with the verifier's own status.
    """

    def action(ctx: StepContext) -> StepResult:
        info = api_info or ctx.api_info
        request, response, early = exchange(
            ctx,
            _params(params, ctx.state),
            url=_url(url, ctx),
            api_info=info,
            as_other_participant=as_other_participant,
        )
        if early is not None:
            return early
        exchanged = {"request": request, "response": response}

        if response.status_code != 200:
            return StepResult.verdict(
                Status.FAILURE, _status_mismatch([200], response), **exchanged
            )
        try:
            document = parse_response(response.body, info)
        except SchemaMismatch as e:
            return StepResult.verdict(
                Status.FAILURE,
                f"The response does not match the {info.response_element} schema. {e}",
                **exchanged,
            )
        if verifier is not None and not verifier.verify(document):
            return StepResult.verdict(
                failure_status or verifier.status, verifier.result_message, **exchanged
            )
        return StepResult.success(**exchanged)

    return ValidationStep(name, action, skip_reason)


def parameters_error(
    name: str,
    params: Params,
    expected_statuses: Sequence[int] = (400,),
    skip_reason: Optional[SkipCheck] = None,
    url: UrlSource = None,
    api_info: Optional[ValidatedApiInfo] = None,
) -> ValidationStep:
    """Expect one of ``expected_statuses`` with an ``<error-response>`` body."""

    def action(ctx: StepContext) -> StepResult:
        request, response, early = exchange(
            ctx, _params(params, ctx.state), url=_url(url, ctx), api_info=api_info
        )
        if early is not None:
            return early
        exchanged = {"request": request, "response": response}

        if response.status_code not in expected_statuses:
            return StepResult.verdict(
                Status.FAILURE, _status_mismatch(expected_statuses, response), **exchanged
            )
        if not is_error_response(response.body):
            return StepResult.verdict(
                Status.WARNING,
                f"HTTP {response.status_code} received as expected, but the body "
                f"is not a valid <error-response>.",
                **exchanged,
            )
        return StepResult.success(**exchanged)

    return ValidationStep(name, action, skip_reason)


def unsupported_method() -> ValidationStep:
    """Expect a request with an HTTP method the API does not support to be rejected."""

    def action(ctx: StepContext) -> StepResult:
        request, response, early = exchange(ctx, [], method="PUT")
        if early is not None:
            return early
        if response.status_code in (400, 405):
            return StepResult.success(request=request, response=response)
        return StepResult.verdict(
            Status.WARNING,
            _status_mismatch([405, 400], response),
            request=request,
            response=response,
        )

    return ValidationStep("Trying PUT request, expect 405 or 400.", action)


def expect_https_url() -> ValidationStep:
    """Check the validated URL uses HTTPS."""

    def action(ctx: StepContext) -> StepResult:
        if urlsplit(ctx.state.url).scheme.lower() != "https":
            return StepResult.verdict(
                Status.FAILURE, "The endpoint URL must use the https scheme."
            )
        return StepResult.success()

    return ValidationStep("Verifying the format of the URL. Expecting a valid HTTPS URL.", action)


def catalogue_lookup() -> ValidationStep:
    """Find the validated URL in the catalogue; the suite cannot run without it."""

    def action(ctx: StepContext) -> StepResult:
        info = ctx.api_info
        state = ctx.state
        entry = ctx.catalogue.api_entry_for_url(state.url, info.api_name, info.endpoint)
        if entry is None:
            return StepResult.aborted(
                Status.ERROR,
                f"Couldn't find {info.display_name} at {state.url} in the catalogue. "
                f"Is the manifest correct?",
            )
        if entry.version.major != state.version.major:
            return StepResult.aborted(
                Status.ERROR,
                f"The catalogue lists version {entry.version} for this URL, "
                f"but {state.version} was requested.",
            )
        state.api_entry = entry
        return StepResult.success()

    return ValidationStep(
        "Checking if the endpoint is listed in the catalogue.", action, fatal=True
    )


def find_value(
    name: str,
    store_key: str,
    selector: Sequence[str],
    params: Params,
    missing_message: str,
    url: UrlSource = None,
    api_info: Optional[ValidatedApiInfo] = None,
    required: bool = True,
) -> ValidationStep:
    """Request a listing and remember its first value under ``store_key``.

    When ``required`` is set any problem aborts the suite, as later steps
    depend on the value. Otherwise the problem is reported as a NOTICE and
    the value stays unknown.
    """

    def give_up(status: Status, message: Optional[str], **exchanged) -> StepResult:
        if required:
            return StepResult.aborted(status, message or missing_message, **exchanged)
        return StepResult.verdict(status, message, **exchanged)

    def action(ctx: StepContext) -> StepResult:
        info = api_info or ctx.api_info
        request, response, early = exchange(
            ctx, _params(params, ctx.state), url=_url(url, ctx), api_info=info
        )
        if early is not None:
            outcome = early.outcome
            return give_up(
                outcome.status,
                outcome.message,
                request=request,
                response=response,
                skipped=outcome.skipped,
            )
        exchanged = {"request": request, "response": response}
        if response.status_code != 200:
            return give_up(
                Status.NOTICE,
                f"{_status_mismatch([200], response)} {missing_message}",
                **exchanged,
            )
        try:
            document = parse_response(response.body, info)
        except SchemaMismatch as e:
            return give_up(Status.NOTICE, f"{e} {missing_message}", **exchanged)

        values = select_values(document, selector)
        if not values:
            return give_up(Status.NOTICE, missing_message, **exchanged)
        ctx.state[store_key] = values[0]
        _LOG.info("Selected %s=%s", store_key, values[0])
        return StepResult.success(**exchanged)

    return ValidationStep(name, action)


def api_url_for_hei(
    name: str,
    hei_key: str,
    api_name: str,
    endpoint,
    store_key: str,
    missing_message: str,
    major: Optional[int] = None,
) -> ValidationStep:
    """Look up another endpoint of an institution in the catalogue."""

    def action(ctx: StepContext) -> StepResult:
        url = ctx.catalogue.url_of(ctx.state[hei_key], api_name, endpoint, major)
        if url is None:
            return StepResult.aborted(Status.NOTICE, missing_message)
        ctx.state[store_key] = url
        return StepResult.success()

    return ValidationStep(name, action)


def select_parameter(
    name: str,
    parameter: Optional[str],
    store_key: str,
    fallback: Callable[[StepContext], Optional[str]],
    missing_message: str,
) -> ValidationStep:
    """Use an operator supplied parameter, or pick a value with ``fallback``.

    With ``parameter`` None the value is always picked by ``fallback``.
    """

    def action(ctx: StepContext) -> StepResult:
        state = ctx.state
        if parameter and state.parameters.is_provided(parameter):
            state[store_key] = state.parameters.value_of(parameter)
            return StepResult.success(f"Using provided {parameter}={state[store_key]}.")
        value = fallback(ctx)
        if value is None:
            return StepResult.aborted(Status.NOTICE, missing_message)
        state[store_key] = value
        return StepResult.success(f"Selected {parameter or store_key}={value}.")

    return ValidationStep(name, action)


def covered_hei(ctx: StepContext) -> Optional[str]:
    """First institution served by the validated endpoint."""
    entry = ctx.state.api_entry or ctx.catalogue.api_entry_for_url(
        ctx.state.url, ctx.api_info.api_name, ctx.api_info.endpoint
    )
    if entry is None or not entry.hei_ids:
        return None
    return entry.hei_ids[0]


def not_permitted_hei(ctx: StepContext) -> Optional[str]:
    """An institution known to the catalogue that the validator does not act for."""
    key_id = ctx.credentials.main.key_id
    own = set(ctx.credentials.main.covered_hei_ids)
    if key_id is not None:
        own.update(ctx.catalogue.heis_covered_by(key_id))
    served = set(ctx.state.api_entry.hei_ids) if ctx.state.api_entry else set()
    for hei_id in ctx.catalogue.all_hei_ids():
        if hei_id not in own and hei_id not in served:
            return hei_id
    return None


def only_if_verified(verifier: Verifier, reason: str) -> SkipCheck:
    """Skip check for steps that need an earlier verification to have passed."""

    def check(state: SuiteState) -> Optional[str]:
        return None if verifier.verification_result else reason

    return check


def modified_since_in_future() -> str:
    future = datetime.now(timezone.utc) + timedelta(days=365 * 10)
    return future.replace(microsecond=0).isoformat()


def modified_since_tests(
    description: str,
    params: ParamPairs,
    ids: VerifierFactory,
    skip_reason: Optional[SkipCheck] = None,
    expected_ids: Optional[list[str]] = None,
) -> list[ValidationStep]:
    """Steps checking the ``modified_since`` filter of an index endpoint.

    A result for a date in the future is only a WARNING, as servers may not
    track modification times precisely.
    """
    params = list(params)
    if expected_ids:
        past_verifier = ids.expect_response_to_contain(expected_ids)
        past_expectation = "the known id in response"
    else:
        past_verifier = ids.expect_response_to_be_not_empty()
        past_expectation = "non-empty response"
    return [
        parameters_200(
            f"Request {description} and modified_since in the future, "
            f"expect 200 OK and empty response.",
            params + [("modified_since", modified_since_in_future())],
            ids.expect_response_to_be_empty(),
            failure_status=Status.WARNING,
            skip_reason=skip_reason,
        ),
        parameters_200(
            f"Request {description} and modified_since far in the past, "
            f"expect 200 OK and {past_expectation}.",
            params + [("modified_since", MODIFIED_SINCE_PAST)],
            past_verifier,
            skip_reason=skip_reason,
        ),
        parameters_error(
            f"Request {description} and multiple modified_since parameters, expect 400.",
            params + repeat("modified_since", MODIFIED_SINCE_PAST, 2),
            skip_reason=skip_reason,
        ),
        parameters_error(
            f"Request {description} and modified_since in invalid format, expect 400.",
            params + [("modified_since", FAKE_ID)],
            skip_reason=skip_reason,
        ),
    ]


def receiving_academic_year_tests(
    description: str,
    params: ParamPairs,
    ids: VerifierFactory,
    academic_year: Optional[str] = None,
    expected_ids: Optional[list[str]] = None,
    skip_reason: Optional[SkipCheck] = None,
) -> list[ValidationStep]:
    """Steps checking the ``receiving_academic_year_id`` filter of an index endpoint."""
    params = list(params)
    steps = [
        parameters_error(
            f"Request {description} and receiving_academic_year_id in invalid format, "
            f"expect 400.",
            params + [("receiving_academic_year_id", "2010-2011")],
        ),
        parameters_200(
            f"Request {description} and unknown receiving_academic_year_id, "
            f"expect 200 OK and empty response.",
            params + [("receiving_academic_year_id", UNKNOWN_ACADEMIC_YEAR)],
            ids.expect_response_to_be_empty(),
            skip_reason=skip_reason,
        ),
    ]
    if academic_year and expected_ids:
        steps.append(
            parameters_200(
                f"Request {description} and known receiving_academic_year_id, "
                f"expect 200 OK and the known id in response.",
                params + [("receiving_academic_year_id", academic_year)],
                ids.expect_response_to_contain(expected_ids),
                skip_reason=skip_reason,
            )
        )
    return steps
