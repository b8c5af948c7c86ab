"""Builds requests to a validated endpoint using a chosen security descriptor."""

from logging import getLogger
from typing import Optional, Sequence
from urllib.parse import urlencode, urlsplit
from uuid import uuid4

from ewp_validator.catalogue import Catalogue
from ewp_validator.credentials import CredentialStore, NoUsableCredential
from ewp_validator.http_signature import ALGORITHM, sign_request
from ewp_validator.models import ApiEndpoint, ValidatorError
from ewp_validator.security import ClientAuth, SecurityDescriptor, ServerAuth
from ewp_validator.transport import Request

_LOG = getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

Parameters = Sequence[tuple[str, str]]


class InvalidEndpoint(ValidatorError):
    """Raised when an endpoint URL is malformed."""

    pass


def encode_parameters(url: str, method: str, params: Parameters) -> tuple[str, bytes]:
    """Place parameters in the query string (GET) or a form body (POST).

    Returns:
        Tuple of (url, body)
    """
    encoded = urlencode(list(params))
    if method.upper() == "POST":
        return url, encoded.encode("ascii")
    if not encoded:
        return url, b""
    separator = "&" if urlsplit(url).query else "?"
    return f"{url}{separator}{encoded}", b""


class RequestBuilder:
    """Creates requests for one API, injecting the requested security methods.

    Args:
        catalogue: Catalogue used to find what the endpoint advertises
        credentials: The validator's own credentials
        api_name: Name of the API the requests are for
        endpoint: Endpoint kind the requests are for
    """

    def __init__(
        self,
        catalogue: Catalogue,
        credentials: CredentialStore,
        api_name: str,
        endpoint: ApiEndpoint,
    ):
        self.catalogue = catalogue
        self.credentials = credentials
        self.api_name = api_name
        self.endpoint = endpoint

    def for_endpoint(self, api_name: str, endpoint: ApiEndpoint) -> "RequestBuilder":
        """Builder for another endpoint of the same validator setup."""
        return RequestBuilder(self.catalogue, self.credentials, api_name, endpoint)

    def build(
        self,
        base_url: str,
        verb: str,
        params: Parameters,
        descriptor: SecurityDescriptor,
        as_other_participant: bool = False,
    ) -> Optional[Request]:
        """Build a request, or return None if the endpoint cannot use ``descriptor``.

        Args:
            base_url: Endpoint URL
            verb: HTTP method
            params: Application parameters as (name, value) pairs
            descriptor: Security methods to use
            as_other_participant: Authenticate as another EWP participant

        Returns:
            The request, or None when the catalogue entry of the endpoint does
            not advertise every method of the descriptor

        Raises:
            InvalidEndpoint: If the URL is malformed.
            NoUsableCredential: If a credential needed by the descriptor is missing.
        """
        parts = urlsplit(base_url)
        if not parts.scheme or not parts.netloc:
            raise InvalidEndpoint(f"Malformed endpoint URL: {base_url!r}")

        entry = self.catalogue.api_entry_for_url(base_url, self.api_name, self.endpoint)
        if entry is None or not entry.supports(descriptor):
            _LOG.debug("%s does not support %s", base_url, descriptor)
            return None

        identity = self.credentials.identity(as_other_participant)
        url, body = encode_parameters(base_url, verb, params)
        request = Request(method=verb.upper(), url=url, body=body)
        if request.method == "POST":
            request.headers["Content-Type"] = FORM_CONTENT_TYPE

        if descriptor.client_auth is ClientAuth.TLS_CERT_SELF_SIGNED:
            if not identity.has_tls_identity:
                raise NoUsableCredential("No TLS client certificate available")
            request.client_cert = (str(identity.cert_path), str(identity.key_path))
        elif descriptor.client_auth is ClientAuth.HTTP_SIG:
            if identity.private_key is None:
                raise NoUsableCredential("No signing key available")
            request.headers.update(
                sign_request(request.method, request.url, request.body, identity.private_key)
            )

        if descriptor.server_auth is ServerAuth.HTTP_SIG:
            request.headers["Accept-Signature"] = ALGORITHM
            request.headers["Want-Digest"] = "SHA-256"
            request.expect_signed_response = True
            if "X-Request-Id" not in request.headers:
                # The response has to echo an id we can compare with.
                request.headers["X-Request-Id"] = str(uuid4())

        return request
