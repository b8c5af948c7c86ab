"""Security method families and the combinations tested against an endpoint.

A :class:`SecurityDescriptor` picks exactly one method from each of the four
families and serializes to a 4-character marker in fixed family order::

    cliauth  srvauth  reqencr  resencr
       H        T        T        T       ->  "HTTT"
"""

import itertools
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from ewp_validator.models import ValidatorError

WILDCARD = "*"


class InvalidDescriptor(ValidatorError):
    """Raised when a security marker string cannot be parsed."""

    pass


class ClientAuth(Enum):
    NONE = "A"
    TLS_CERT_SELF_SIGNED = "S"
    HTTP_SIG = "H"


class ServerAuth(Enum):
    TLS_CERT = "T"
    HTTP_SIG = "H"


class RequestEncryption(Enum):
    TLS = "T"


class ResponseEncryption(Enum):
    TLS = "T"


FAMILIES = (ClientAuth, ServerAuth, RequestEncryption, ResponseEncryption)


def _parse_method(family: type[Enum], code: str, marker: str) -> Enum:
    try:
        return family(code)
    except ValueError:
        raise InvalidDescriptor(
            f"Unknown {family.__name__} method {code!r} in {marker!r}"
        ) from None


@dataclass(frozen=True)
class SecurityDescriptor:
    """One concrete choice of security methods."""

    client_auth: ClientAuth
    server_auth: ServerAuth
    request_encryption: RequestEncryption = RequestEncryption.TLS
    response_encryption: ResponseEncryption = ResponseEncryption.TLS

    @classmethod
    def parse(cls, marker: str) -> "SecurityDescriptor":
        """Parse a 4-character marker such as ``HTTT``.

        Raises:
            InvalidDescriptor: On wrong length or unknown characters.
        """
        if not isinstance(marker, str) or len(marker) != len(FAMILIES):
            raise InvalidDescriptor(f"Security marker must have 4 characters: {marker!r}")
        methods = [
            _parse_method(family, code, marker) for family, code in zip(FAMILIES, marker)
        ]
        return cls(*methods)

    def methods(self) -> tuple[Enum, Enum, Enum, Enum]:
        return (
            self.client_auth,
            self.server_auth,
            self.request_encryption,
            self.response_encryption,
        )

    def matches(self, security_filter: Optional["SecurityFilter"]) -> bool:
        """Field-wise match against an operator supplied filter."""
        if security_filter is None:
            return True
        return security_filter.accepts(self)

    def __str__(self) -> str:
        return "".join(method.value for method in self.methods())


@dataclass(frozen=True)
class SecurityFilter:
    """Descriptor pattern where ``None`` fields (``*`` in the marker) match anything."""

    client_auth: Optional[ClientAuth] = None
    server_auth: Optional[ServerAuth] = None
    request_encryption: Optional[RequestEncryption] = None
    response_encryption: Optional[ResponseEncryption] = None

    @classmethod
    def parse(cls, marker: Optional[str]) -> "SecurityFilter":
        """Parse a marker that may contain ``*`` wildcards. None means "any".

        Raises:
            InvalidDescriptor: On wrong length or unknown characters.
        """
        if marker is None:
            return cls()
        if not isinstance(marker, str) or len(marker) != len(FAMILIES):
            raise InvalidDescriptor(f"Security marker must have 4 characters: {marker!r}")
        methods = [
            None if code == WILDCARD else _parse_method(family, code, marker)
            for family, code in zip(FAMILIES, marker)
        ]
        return cls(*methods)

    def accepts(self, descriptor: SecurityDescriptor) -> bool:
        wanted = (
            self.client_auth,
            self.server_auth,
            self.request_encryption,
            self.response_encryption,
        )
        return all(
            want is None or want == have
            for want, have in zip(wanted, descriptor.methods())
        )

    def __str__(self) -> str:
        return "".join(
            WILDCARD if method is None else method.value
            for method in (
                self.client_auth,
                self.server_auth,
                self.request_encryption,
                self.response_encryption,
            )
        )


def is_allowed(descriptor: SecurityDescriptor) -> bool:
    """Global rules every tested combination must obey."""
    # TLS response encryption only makes sense on a TLS encrypted request.
    if (
        descriptor.response_encryption is ResponseEncryption.TLS
        and descriptor.request_encryption is not RequestEncryption.TLS
    ):
        return False
    return True


def _unique(methods: Iterable[Enum]) -> list[Enum]:
    seen: list[Enum] = []
    for method in methods:
        if method not in seen:
            seen.append(method)
    return seen


def enumerate_descriptors(
    client_auth: Iterable[ClientAuth],
    server_auth: Iterable[ServerAuth],
    request_encryption: Iterable[RequestEncryption] = (RequestEncryption.TLS,),
    response_encryption: Iterable[ResponseEncryption] = (ResponseEncryption.TLS,),
) -> list[SecurityDescriptor]:
    """Build every allowed descriptor from the methods an endpoint advertises.

    The result keeps the advertised order of each family (client auth varies
    slowest) and contains no duplicates.
    """
    product = itertools.product(
        _unique(client_auth),
        _unique(server_auth),
        _unique(request_encryption),
        _unique(response_encryption),
    )
    descriptors = [SecurityDescriptor(*methods) for methods in product]
    return [descriptor for descriptor in descriptors if is_allowed(descriptor)]
