"""In-process fake EWP services for the API scenario tests.

Every fake endpoint implements the rules of its API correctly. Subclasses
named after a fault break exactly one rule, so a scenario can check that the
matching step catches it. The services sit behind :class:`FakeTransport`,
which verifies HTTP signatures and identifies the calling institutions
through the catalogue, the way a real EWP host would.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import parse_qsl, urlsplit

from cryptography.hazmat.primitives import serialization

from ewp_validator.apis import iias, institutions, mobilities, mt_institutions, mt_projects
from ewp_validator.catalogue import StaticCatalogue
from ewp_validator.documents import ERROR_RESPONSE_NAMESPACE
from ewp_validator.http_signature import parse_signature_params, sign_response, verify_request
from ewp_validator.models import ApiEndpoint, ValidatedApiInfo
from ewp_validator.transport import Request, RequestTimeout, Response, Transport, TransportError
from ewp_validator.validator import ValidationEnvironment, build_default_manager

VALIDATOR_HEI = "validator-hei01.developers.erasmuswithoutpaper.eu"
OTHER_HEI = "other-hei.example.com"
TESTED_HEI = "uw.edu.pl"
PARTNER_HEI = "partner.example.com"
KNOWN_PIC = "999572294"

INSTITUTIONS_URL = "https://ewp.uw.edu.pl/institutions"
MT_INSTITUTIONS_URL = "https://ewp.uw.edu.pl/mt-institutions"
IIAS_INDEX_URL = "https://ewp.uw.edu.pl/iias/index"
IIAS_GET_URL = "https://ewp.uw.edu.pl/iias/get"
IIAS_INDEX_V6_URL = "https://ewp.uw.edu.pl/iias/v6/index"
IIAS_GET_V6_URL = "https://ewp.uw.edu.pl/iias/v6/get"
MT_PROJECTS_URL = "https://ewp.uw.edu.pl/mt-projects"
OMOBILITIES_INDEX_URL = "https://ewp.uw.edu.pl/omobilities/index"
IMOBILITY_TORS_INDEX_URL = "https://ewp.uw.edu.pl/imobility-tors/index"

MODIFIED = datetime(2020, 6, 1, tzinfo=timezone.utc)
ACADEMIC_YEAR = "2020/2021"
CALL_YEAR = "2020"

_YEAR = re.compile(r"^\d{4}/\d{4}$")
_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_CALL_YEAR = re.compile(r"^\d{4}$")


def public_pem(private_key) -> str:
    return private_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def build_catalogue(credentials, server_auth=("T",), server_key=None, max_ids=2) -> StaticCatalogue:
    """Catalogue with the validator, another participant and the tested host."""

    def api(name, url, version, endpoint=None, limit=None):
        entry = {
            "name": name,
            "endpoint": endpoint,
            "version": version,
            "url": url,
            "client_auth": ["H"],
            "server_auth": list(server_auth),
        }
        if limit:
            entry["max_ids"] = {limit: max_ids}
        return entry

    return StaticCatalogue.from_dict({
        "hosts": [
            {
                "name": "validator",
                "hei_ids": [VALIDATOR_HEI],
                "client_key_ids": [credentials.main.key_id],
            },
            {
                "name": "other",
                "hei_ids": [OTHER_HEI],
                "client_key_ids": [credentials.other.key_id] if credentials.other else [],
            },
            {
                "name": "uw",
                "hei_ids": [TESTED_HEI],
                "server_keys": [public_pem(server_key)] if server_key else [],
                "apis": [
                    api("institutions", INSTITUTIONS_URL, "2.0.0", limit="max-hei-ids"),
                    api("mt-institutions", MT_INSTITUTIONS_URL, "1.0.0", limit="max-ids"),
                    api("mt-projects", MT_PROJECTS_URL, "1.0.0"),
                    api("iias", IIAS_INDEX_URL, "2.0.0", "index"),
                    api("iias", IIAS_GET_URL, "2.0.0", "get", limit="max-iia-ids"),
                    api("iias", IIAS_INDEX_V6_URL, "6.0.0", "index"),
                    api("iias", IIAS_GET_V6_URL, "6.0.0", "get", limit="max-iia-ids"),
                    api("omobilities", OMOBILITIES_INDEX_URL, "1.0.0", "index"),
                    api("imobility-tors", IMOBILITY_TORS_INDEX_URL, "1.0.0", "index"),
                ],
            },
        ]
    })


def document(api_info: ValidatedApiInfo, content: str) -> Response:
    body = (
        f'<{api_info.response_element} xmlns="{api_info.response_namespace}">'
        f"{content}</{api_info.response_element}>"
    )
    return Response(200, {"Content-Type": "application/xml"}, body.encode("utf-8"))


def error_response(status: int, message: str) -> Response:
    body = (
        f'<error-response xmlns="{ERROR_RESPONSE_NAMESPACE}">'
        f"<developer-message>{message}</developer-message></error-response>"
    )
    return Response(status, {"Content-Type": "application/xml"}, body.encode("utf-8"))


def values(params: list[tuple[str, str]], name: str) -> list[str]:
    return [value for key, value in params if key == name]


def parse_modified_since(params) -> tuple[Optional[str], Optional[datetime]]:
    """Returns (error, since)."""
    raw = values(params, "modified_since")
    if len(raw) > 1:
        return "Multiple modified_since parameters.", None
    if not raw:
        return None, None
    try:
        since = datetime.fromisoformat(raw[0])
    except ValueError:
        return f"Invalid modified_since: {raw[0]}", None
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    return None, since


def invalid_year(params) -> Optional[str]:
    for year in values(params, "receiving_academic_year_id"):
        if not _YEAR.match(year):
            return year
    return None


class FakeService:
    """Base of the fake endpoints."""

    permitted = frozenset({VALIDATOR_HEI})

    def handle(self, method: str, params: list[tuple[str, str]], caller_heis: list[str]) -> Response:
        if method not in ("GET", "POST"):
            return error_response(405, f"{method} is not supported.")
        return self.respond(params, caller_heis)

    def respond(self, params, caller_heis) -> Response:
        raise NotImplementedError

    def can_see(self, caller_heis) -> bool:
        return bool(self.permitted.intersection(caller_heis))

    def modified_after(self, modified: datetime, since: Optional[datetime]) -> bool:
        return since is None or modified > since


class InstitutionsService(FakeService):
    enforce_max_ids = True

    def __init__(self, heis=(TESTED_HEI,), max_ids: int = 2):
        self.heis = set(heis)
        self.max_ids = max_ids

    def respond(self, params, caller_heis) -> Response:
        ids = values(params, "hei_id")
        if not ids:
            return error_response(400, "Missing hei_id.")
        if self.enforce_max_ids and len(ids) > self.max_ids:
            return error_response(400, "Too many hei_id values.")
        content = "".join(f"<hei><hei-id>{hei}</hei-id></hei>" for hei in ids if hei in self.heis)
        return document(institutions.API_INFO_V2, content)


class IgnoringMaxIdsInstitutionsService(InstitutionsService):
    enforce_max_ids = False


class MtInstitutionsService(FakeService):
    def __init__(self, pics=(KNOWN_PIC,), max_ids: int = 2):
        self.pics = set(pics)
        self.max_ids = max_ids

    def respond(self, params, caller_heis) -> Response:
        pics = values(params, "pic")
        dates = values(params, "eche_at_date")
        if not pics or len(pics) > self.max_ids:
            return error_response(400, "Expected between one and max-ids pic values.")
        if len(dates) != 1 or not _DATE.match(dates[0]):
            return error_response(400, "Expected one eche_at_date in YYYY-MM-DD format.")
        content = "".join(f"<hei><pic>{pic}</pic></hei>" for pic in pics if pic in self.pics)
        return document(mt_institutions.API_INFO_V1, content)


class MtProjectsService(FakeService):
    require_call_year = True

    def __init__(self, projects=((KNOWN_PIC, CALL_YEAR, "2020-1-PL01-KA103-000001"),)):
        self.projects = list(projects)

    def respond(self, params, caller_heis) -> Response:
        pics = values(params, "pic")
        years = values(params, "call_year")
        if len(pics) != 1:
            return error_response(400, "Expected exactly one pic.")
        if len(years) > 1 or (years and not _CALL_YEAR.match(years[0])):
            return error_response(400, "Expected one call_year in YYYY format.")
        if not years and self.require_call_year:
            return error_response(400, "Missing call_year.")
        content = "".join(
            f"<project><pic>{pic}</pic><call-year>{year}</call-year>"
            f"<agreement-number>{number}</agreement-number></project>"
            for pic, year, number in self.projects
            if pic == pics[0] and (not years or year == years[0])
        )
        return document(mt_projects.API_INFO_V1, content)


class IgnoringCallYearMtProjectsService(MtProjectsService):
    """Lists the projects of every call year when call_year is missing."""

    require_call_year = False


@dataclass
class FakeIia:
    iia_id: str
    hei_id: str = TESTED_HEI
    partner_hei_id: str = PARTNER_HEI
    academic_years: list[str] = field(default_factory=lambda: [ACADEMIC_YEAR])
    modified: datetime = MODIFIED

    def as_xml(self) -> str:
        years = "".join(
            f"<receiving-academic-year-id>{year}</receiving-academic-year-id>"
            for year in self.academic_years
        )
        return (
            f"<iia><partner><hei-id>{self.hei_id}</hei-id><iia-id>{self.iia_id}</iia-id></partner>"
            f"<partner><hei-id>{self.partner_hei_id}</hei-id></partner>"
            f"<cooperation-conditions><student-studies-mobility-spec>{years}"
            f"</student-studies-mobility-spec></cooperation-conditions></iia>"
        )


def _single_hei(params, hei_id: str) -> Optional[Response]:
    heis = values(params, "hei_id")
    if len(heis) != 1:
        return error_response(400, "Expected exactly one hei_id.")
    if heis[0] != hei_id:
        return error_response(400, f"Unknown hei_id: {heis[0]}")
    return None


class IiaIndexService(FakeService):
    def __init__(
        self,
        agreements: list[FakeIia],
        hei_id: str = TESTED_HEI,
        api_info: ValidatedApiInfo = iias.INDEX_API_INFO_V2,
    ):
        self.iias = agreements
        self.hei_id = hei_id
        self.api_info = api_info

    def respond(self, params, caller_heis) -> Response:
        problem = _single_hei(params, self.hei_id)
        if problem:
            return problem
        partners = values(params, "partner_hei_id")
        if len(partners) > 1:
            return error_response(400, "Multiple partner_hei_id parameters.")
        year = invalid_year(params)
        if year:
            return error_response(400, f"Invalid receiving_academic_year_id: {year}")
        error, since = parse_modified_since(params)
        if error:
            return error_response(400, error)

        years = values(params, "receiving_academic_year_id")
        listed = [
            iia
            for iia in self.iias
            if self.can_see(caller_heis)
            and (not partners or iia.partner_hei_id in partners)
            and (not years or any(y in iia.academic_years for y in years))
            and self.modified_after(iia.modified, since)
        ]
        content = "".join(f"<iia-id>{iia.iia_id}</iia-id>" for iia in listed)
        return document(self.api_info, content)


class LeakingIiaIndexService(IiaIndexService):
    """Lists the IIAs to every EWP participant."""

    def can_see(self, caller_heis) -> bool:
        return True


class IgnoringModifiedSinceIiaIndexService(IiaIndexService):
    def modified_after(self, modified, since) -> bool:
        return True


class IiaGetService(FakeService):
    def __init__(
        self,
        agreements: list[FakeIia],
        hei_id: str = TESTED_HEI,
        max_ids: int = 2,
        api_info: ValidatedApiInfo = iias.GET_API_INFO_V2,
    ):
        self.iias = agreements
        self.hei_id = hei_id
        self.max_ids = max_ids
        self.api_info = api_info

    def respond(self, params, caller_heis) -> Response:
        problem = _single_hei(params, self.hei_id)
        if problem:
            return problem
        ids = values(params, "iia_id")
        codes = values(params, "iia_code")
        if ids and codes:
            return error_response(400, "Both iia_id and iia_code given.")
        if not ids and not codes:
            return error_response(400, "Either iia_id or iia_code is required.")
        if len(ids) > self.max_ids:
            return error_response(400, "Too many iia_id values.")
        found = []
        if self.can_see(caller_heis):
            found = [iia for iia in self.iias if iia.iia_id in ids]
        return document(self.api_info, "".join(iia.as_xml() for iia in found))


@dataclass
class FakeMobility:
    omobility_id: str
    own_hei_id: str = TESTED_HEI
    other_hei_id: str = PARTNER_HEI
    academic_year: str = ACADEMIC_YEAR
    modified: datetime = MODIFIED


class MobilityIndexService(FakeService):
    def __init__(self, layout: mobilities.MobilityIndexLayout, listed=None, hei_id: str = TESTED_HEI):
        self.layout = layout
        self.mobilities = listed if listed is not None else [FakeMobility("omobility-1")]
        self.hei_id = hei_id

    def respond(self, params, caller_heis) -> Response:
        own = values(params, self.layout.own_parameter)
        if len(own) != 1:
            return error_response(400, f"Expected exactly one {self.layout.own_parameter}.")
        if own[0] != self.hei_id:
            return error_response(400, f"Unknown {self.layout.own_parameter}: {own[0]}")
        year = invalid_year(params)
        if year:
            return error_response(400, f"Invalid receiving_academic_year_id: {year}")
        error, since = parse_modified_since(params)
        if error:
            return error_response(400, error)

        others = values(params, self.layout.other_parameter)
        years = values(params, "receiving_academic_year_id")
        listed = [
            mobility
            for mobility in self.mobilities
            if self.can_see(caller_heis)
            and (not others or mobility.other_hei_id in others)
            and (not years or mobility.academic_year in years)
            and self.modified_after(mobility.modified, since)
        ]
        content = "".join(f"<omobility-id>{m.omobility_id}</omobility-id>" for m in listed)
        return document(self.layout.api_info, content)


class LeakingMobilityIndexService(MobilityIndexService):
    """Lists the mobilities to every EWP participant."""

    def can_see(self, caller_heis) -> bool:
        return True


def default_services() -> dict:
    agreements = [FakeIia("iia-1")]
    return {
        INSTITUTIONS_URL: InstitutionsService(),
        MT_INSTITUTIONS_URL: MtInstitutionsService(),
        MT_PROJECTS_URL: MtProjectsService(),
        IIAS_INDEX_URL: IiaIndexService(agreements),
        IIAS_GET_URL: IiaGetService(agreements),
        IIAS_INDEX_V6_URL: IiaIndexService(agreements, api_info=iias.INDEX_API_INFO_V6),
        IIAS_GET_V6_URL: IiaGetService(agreements, api_info=iias.GET_API_INFO_V6),
        OMOBILITIES_INDEX_URL: MobilityIndexService(mobilities.OMOBILITIES_INDEX_V1),
        IMOBILITY_TORS_INDEX_URL: MobilityIndexService(mobilities.IMOBILITY_TORS_INDEX_V1),
    }


class FakeTransport(Transport):
    """Routes requests to fake services by URL, without touching the network.

    Args:
        catalogue: Used to find the institutions a signing key acts for
        services: Fake service per endpoint URL
        client_keys: Public keys accepted in request signatures
        server_key: When set, responses are signed if the client asks for it
    """

    def __init__(self, catalogue, services, client_keys=(), server_key=None):
        self.catalogue = catalogue
        self.services = dict(services)
        self.client_keys = list(client_keys)
        self.server_key = server_key
        self.sent: list[Request] = []

    def send(self, request: Request, timeout: float) -> Response:
        self.sent.append(request)
        parts = urlsplit(request.url)
        base = f"{parts.scheme}://{parts.netloc}{parts.path}"
        service = self.services.get(base)
        if service is None:
            raise TransportError(f"Connection refused: {base}")

        if request.method == "POST":
            params = parse_qsl(request.body.decode("ascii"), keep_blank_values=True)
        else:
            params = parse_qsl(parts.query, keep_blank_values=True)

        caller = self.authenticate(request)
        if caller is None:
            response = error_response(401, "Invalid request signature.")
        else:
            response = service.handle(request.method, params, caller)

        if request.expect_signed_response and self.server_key is not None:
            response.headers.update(
                sign_response(response.body, self.server_key, request.request_id)
            )
        return response

    def authenticate(self, request: Request) -> Optional[list[str]]:
        """Institutions the caller acts for, None for a bad signature."""
        authorization = request.headers.get("Authorization")
        if authorization is None:
            return []
        problem = verify_request(
            request.method, request.url, request.headers, request.body, self.client_keys
        )
        if problem:
            return None
        return self.catalogue.heis_covered_by(parse_signature_params(authorization)["keyId"])

    def urls(self) -> list[str]:
        return [request.url for request in self.sent]


class TimeoutTransport(FakeTransport):
    """Times out every request whose URL or body contains ``marker``."""

    def __init__(self, *args, marker: str = "", **kwargs):
        super().__init__(*args, **kwargs)
        self.marker = marker

    def send(self, request: Request, timeout: float) -> Response:
        if self.marker in request.url or self.marker.encode("ascii") in request.body:
            self.sent.append(request)
            raise RequestTimeout(f"Request to {request.url} timed out")
        return super().send(request, timeout)


def client_keys(credentials) -> list:
    keys = [credentials.main.private_key.public_key()]
    if credentials.other is not None:
        keys.append(credentials.other.private_key.public_key())
    return keys


def run_validation(
    credentials,
    api_name: str,
    endpoint: ApiEndpoint,
    url: str,
    version: str,
    services: Optional[dict] = None,
    params: Optional[dict] = None,
    transport_class=FakeTransport,
    **transport_options,
):
    """Validate a fake endpoint.

    Returns:
        Tuple of (report, transport)
    """
    catalogue = build_catalogue(credentials)
    all_services = default_services()
    all_services.update(services or {})
    transport = transport_class(
        catalogue, all_services, client_keys=client_keys(credentials), **transport_options
    )
    environment = ValidationEnvironment(catalogue, credentials, transport, timeout=1.0)
    report = build_default_manager(environment).validate(
        api_name, endpoint, url, version, params=params
    )
    return report, transport


def steps_named(report, name: str) -> list:
    return [step for step in report.steps if step.name == name]
