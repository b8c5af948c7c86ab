"""HTTP signatures as used for EWP client and server authentication.

Requests are signed with RSA-SHA256 over the ``(request-target)``, ``host``,
``date``, ``digest`` and ``x-request-id`` headers and carry the result in an
``Authorization: Signature ...`` header. Servers answering with a signed
response put the same kind of parameter list into a ``Signature`` header.
The key id is the SHA-256 fingerprint of the signer's public key.
"""

import base64
import hashlib
import re
import uuid
from email.utils import formatdate
from typing import Any, Iterable, Mapping, Optional
from urllib.parse import urlsplit

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding

from ewp_validator.credentials import key_id_of

ALGORITHM = "rsa-sha256"
REQUEST_SIGNED_HEADERS = ("(request-target)", "host", "date", "digest", "x-request-id")
RESPONSE_SIGNED_HEADERS = ("date", "digest", "x-request-id")

_PARAM_PATTERN = re.compile(r'(\w+)="([^"]*)"')


def digest_header(body: bytes) -> str:
    """Value of the ``Digest`` header for a body."""
    return "SHA-256=" + base64.b64encode(hashlib.sha256(body).digest()).decode("ascii")


def request_target(method: str, url: str) -> str:
    parts = urlsplit(url)
    target = parts.path or "/"
    if parts.query:
        target += "?" + parts.query
    return f"{method.lower()} {target}"


def signing_string(
    header_names: Iterable[str],
    headers: Mapping[str, str],
    target: Optional[str] = None,
) -> str:
    """Build the string covered by the signature.

    Raises:
        KeyError: If one of the listed headers is not present.
    """
    lowered = {name.lower(): value for name, value in headers.items()}
    lines = []
    for name in header_names:
        if name == "(request-target)":
            if target is None:
                raise KeyError(name)
            lines.append(f"(request-target): {target}")
        else:
            lines.append(f"{name}: {lowered[name]}")
    return "\n".join(lines)


def parse_signature_params(value: str) -> dict[str, str]:
    """Parse ``keyId="..",algorithm="..",...`` into a dict."""
    if value.lower().startswith("signature "):
        value = value[len("signature "):]
    return dict(_PARAM_PATTERN.findall(value))


def _sign(private_key: Any, text: str) -> str:
    signature = private_key.sign(text.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(signature).decode("ascii")


def _format_params(key_id: str, header_names: Iterable[str], signature: str) -> str:
    return (
        f'keyId="{key_id}",algorithm="{ALGORITHM}",'
        f'headers="{" ".join(header_names)}",signature="{signature}"'
    )


def sign_request(
    method: str,
    url: str,
    body: bytes,
    private_key: Any,
    request_id: Optional[str] = None,
    date: Optional[str] = None,
) -> dict[str, str]:
    """Create the headers authenticating a request with an HTTP signature.

    Args:
        method: HTTP method of the request
        url: Full request URL, including the query string
        body: Request body (empty for GET)
        private_key: RSA private key of the client
        request_id: Value for ``X-Request-Id``, random when omitted
        date: Value for ``Date``, current time when omitted

    Returns:
        Headers to add to the request
    """
    headers = {
        "Host": urlsplit(url).netloc,
        "Date": date or formatdate(usegmt=True),
        "Digest": digest_header(body),
        "X-Request-Id": request_id or str(uuid.uuid4()),
    }
    text = signing_string(REQUEST_SIGNED_HEADERS, headers, request_target(method, url))
    key_id = key_id_of(private_key.public_key())
    headers["Authorization"] = "Signature " + _format_params(
        key_id, REQUEST_SIGNED_HEADERS, _sign(private_key, text)
    )
    return headers


def sign_response(
    body: bytes,
    private_key: Any,
    request_id: str,
    date: Optional[str] = None,
) -> dict[str, str]:
    """Create the headers of a signed response to the request with ``request_id``."""
    headers = {
        "Date": date or formatdate(usegmt=True),
        "Digest": digest_header(body),
        "X-Request-Id": request_id,
    }
    text = signing_string(RESPONSE_SIGNED_HEADERS, headers)
    key_id = key_id_of(private_key.public_key())
    headers["Signature"] = _format_params(
        key_id, RESPONSE_SIGNED_HEADERS, _sign(private_key, text)
    )
    return headers


def _verify(
    params: Mapping[str, str],
    headers: Mapping[str, str],
    public_keys: Iterable[Any],
    required: Iterable[str],
    target: Optional[str] = None,
) -> Optional[str]:
    if params.get("algorithm", ALGORITHM).lower() != ALGORITHM:
        return f"Unsupported signature algorithm: {params.get('algorithm')}"
    if "signature" not in params or "keyId" not in params:
        return "Signature parameters are incomplete."

    signed = params.get("headers", "date").lower().split()
    missing = [name for name in required if name not in signed]
    if missing:
        return f"Signature does not cover required headers: {', '.join(missing)}"

    keys = {key_id_of(key): key for key in public_keys}
    public_key = keys.get(params["keyId"])
    if public_key is None:
        return f"Signature key {params['keyId']} is not known for this host."

    try:
        text = signing_string(signed, headers, target)
    except KeyError as e:
        return f"Signed header {e} is missing."

    try:
        public_key.verify(
            base64.b64decode(params["signature"]),
            text.encode("utf-8"),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
    except (InvalidSignature, ValueError):
        return "Signature verification failed."
    return None


def verify_request(
    method: str,
    url: str,
    headers: Mapping[str, str],
    body: bytes,
    public_keys: Iterable[Any],
) -> Optional[str]:
    """Verify an HTTP signature of a request.

    Returns:
        None when the signature is valid, otherwise a description of the problem
    """
    lowered = {name.lower(): value for name, value in headers.items()}
    authorization = lowered.get("authorization", "")
    if not authorization.lower().startswith("signature "):
        return "Request is not signed."
    if lowered.get("digest") != digest_header(body):
        return "Digest header does not match the request body."
    return _verify(
        parse_signature_params(authorization),
        lowered,
        public_keys,
        REQUEST_SIGNED_HEADERS,
        request_target(method, url),
    )


def verify_response(
    headers: Mapping[str, str],
    body: bytes,
    request_id: Optional[str],
    public_keys: Iterable[Any],
) -> Optional[str]:
    """Verify the HTTP signature of a response.

    Returns:
        None when the signature is valid, otherwise a description of the problem
    """
    lowered = {name.lower(): value for name, value in headers.items()}
    if "signature" not in lowered:
        return "Response is not signed, but a signed response was requested."
    if lowered.get("digest") != digest_header(body):
        return "Digest header does not match the response body."
    if request_id is not None and lowered.get("x-request-id") != request_id:
        return "X-Request-Id of the response does not match the request."
    return _verify(
        parse_signature_params(lowered["signature"]),
        lowered,
        public_keys,
        RESPONSE_SIGNED_HEADERS,
    )
