"""HTTP transport used to talk to the validated APIs.

Every request carries an explicit timeout and is sent exactly once. Errors
are classified into timeouts and other transport failures; the suite engine
turns both into ERROR verdicts.
"""

import ssl
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from logging import getLogger
from typing import Optional

import httpx
from h11 import LocalProtocolError as H11LocalProtocolError

_LOG = getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class TransportError(Exception):
    """Raised when a request could not be completed."""

    pass


class RequestTimeout(TransportError):
    """Raised when a request did not complete within its timeout."""

    pass


@dataclass
class Request:
    """A fully prepared outgoing request."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    client_cert: Optional[tuple[str, str]] = None
    expect_signed_response: bool = False

    @property
    def request_id(self) -> Optional[str]:
        return self.headers.get("X-Request-Id")


@dataclass
class Response:
    """A received response."""

    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


class Transport(ABC):
    """Sends requests built by the request builder."""

    @abstractmethod
    def send(self, request: Request, timeout: float) -> Response:
        """Send a request and return the response.

        Raises:
            RequestTimeout: If the request timed out.
            TransportError: On any other I/O failure.
        """
        pass

    def close(self) -> None:
        pass


def is_timeout_error(error: Exception) -> bool:
    """Determine if an httpx error means the request timed out."""
    return isinstance(error, httpx.TimeoutException)


class HttpTransport(Transport):
    """httpx based transport.

    One client is kept per TLS client identity. httpx clients pool their
    connections and may be shared between threads.
    """

    def __init__(self, verify: bool = True):
        self._verify = verify
        self._clients: dict[Optional[tuple[str, str]], httpx.Client] = {}
        self._lock = threading.Lock()

    def _ssl_context(self, client_cert: Optional[tuple[str, str]]):
        if not client_cert and self._verify:
            return True
        context = ssl.create_default_context()
        if not self._verify:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        if client_cert:
            cert_path, key_path = client_cert
            context.load_cert_chain(certfile=cert_path, keyfile=key_path)
        return context

    def _client_for(self, client_cert: Optional[tuple[str, str]]) -> httpx.Client:
        with self._lock:
            client = self._clients.get(client_cert)
            if client is None:
                client = httpx.Client(verify=self._ssl_context(client_cert))
                self._clients[client_cert] = client
            return client

    def send(self, request: Request, timeout: float) -> Response:
        try:
            client = self._client_for(request.client_cert)
        except OSError as e:
            raise TransportError(f"Cannot use client certificate: {e}") from e

        _LOG.debug("%s %s", request.method, request.url)
        try:
            response = client.request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body or None,
                timeout=timeout,
            )
        except httpx.HTTPError as e:
            if is_timeout_error(e):
                raise RequestTimeout(f"Request to {request.url} timed out") from e
            raise TransportError(f"Request to {request.url} failed: {e}") from e
        except (httpx.InvalidURL, H11LocalProtocolError) as e:
            raise TransportError(f"Request to {request.url} failed: {e}") from e

        return Response(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.content,
        )

    def close(self) -> None:
        with self._lock:
            for client in self._clients.values():
                client.close()
            self._clients.clear()
