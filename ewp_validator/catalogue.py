"""Catalogue of EWP hosts, the APIs they implement and the keys they use.

The real catalogue is maintained by the EWP registry; this module defines the
lookups the validator needs and a static implementation loaded from JSON.

JSON layout::

    {
      "hosts": [
        {
          "name": "uw",
          "hei_ids": ["uw.edu.pl"],
          "client_key_ids": ["<sha256 hex of a client public key>"],
          "server_keys": ["-----BEGIN PUBLIC KEY-----..."],
          "apis": [
            {
              "name": "iias",
              "endpoint": "index",
              "version": "2.0.0",
              "url": "https://ewp.uw.edu.pl/iias/index",
              "client_auth": ["S", "H"],
              "server_auth": ["T", "H"],
              "max_ids": {"max-iia-ids": 10}
            }
          ]
        }
      ]
    }
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from logging import getLogger
from pathlib import Path
from typing import Any, Optional

from cryptography.hazmat.primitives import serialization

from ewp_validator.models import (
    ApiEndpoint,
    InvalidVersionString,
    SemanticVersion,
    ValidatorError,
)
from ewp_validator.security import (
    ClientAuth,
    RequestEncryption,
    ResponseEncryption,
    SecurityDescriptor,
    ServerAuth,
    enumerate_descriptors,
)

_LOG = getLogger(__name__)


class CatalogueError(ValidatorError):
    """Raised when a catalogue document cannot be loaded."""

    pass


@dataclass
class ApiEntry:
    """One API endpoint advertised by a host."""

    api_name: str
    endpoint: ApiEndpoint
    version: SemanticVersion
    url: str
    hei_ids: list[str] = field(default_factory=list)
    client_auth: list[ClientAuth] = field(
        default_factory=lambda: [ClientAuth.TLS_CERT_SELF_SIGNED, ClientAuth.HTTP_SIG]
    )
    server_auth: list[ServerAuth] = field(default_factory=lambda: [ServerAuth.TLS_CERT])
    request_encryption: list[RequestEncryption] = field(
        default_factory=lambda: [RequestEncryption.TLS]
    )
    response_encryption: list[ResponseEncryption] = field(
        default_factory=lambda: [ResponseEncryption.TLS]
    )
    max_ids: dict[str, int] = field(default_factory=dict)

    def supports(self, descriptor: SecurityDescriptor) -> bool:
        return (
            descriptor.client_auth in self.client_auth
            and descriptor.server_auth in self.server_auth
            and descriptor.request_encryption in self.request_encryption
            and descriptor.response_encryption in self.response_encryption
        )

    def descriptors(self) -> list[SecurityDescriptor]:
        """All allowed security combinations this endpoint advertises."""
        return enumerate_descriptors(
            self.client_auth,
            self.server_auth,
            self.request_encryption,
            self.response_encryption,
        )


@dataclass
class HostEntry:
    """A host serving APIs on behalf of some HEIs."""

    name: str
    hei_ids: list[str] = field(default_factory=list)
    apis: list[ApiEntry] = field(default_factory=list)
    client_key_ids: list[str] = field(default_factory=list)
    server_public_keys: list[Any] = field(default_factory=list)


class Catalogue(ABC):
    """Lookups into the EWP catalogue used by the validator."""

    @abstractmethod
    def url_of(
        self, hei_id: str, api_name: str, endpoint: ApiEndpoint, major: Optional[int] = None
    ) -> Optional[str]:
        """URL of the given API endpoint for an institution, None if not found.

        With several versions listed the newest wins, or the newest of the
        given ``major`` version.
        """
        pass

    @abstractmethod
    def public_keys_of(self, hei_id: str) -> list[Any]:
        """Server public keys of the host covering the institution."""
        pass

    @abstractmethod
    def heis_covered_by(self, client_key_id: str) -> list[str]:
        """Institutions a client key is registered to act for."""
        pass

    @abstractmethod
    def api_entry_for_url(
        self, url: str, api_name: str, endpoint: ApiEndpoint
    ) -> Optional[ApiEntry]:
        """The advertised entry for an endpoint URL, None if not found."""
        pass

    @abstractmethod
    def all_hei_ids(self) -> list[str]:
        """Every institution known to the catalogue."""
        pass


class StaticCatalogue(Catalogue):
    """In-memory catalogue built from a list of hosts."""

    def __init__(self, hosts: list[HostEntry]):
        self.hosts = hosts

    def _entries(self):
        for host in self.hosts:
            for api in host.apis:
                yield host, api

    def url_of(
        self, hei_id: str, api_name: str, endpoint: ApiEndpoint, major: Optional[int] = None
    ) -> Optional[str]:
        candidates = [
            api
            for host, api in self._entries()
            if api.api_name == api_name
            and api.endpoint == endpoint
            and hei_id in (api.hei_ids or host.hei_ids)
            and (major is None or api.version.major == major)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda api: api.version).url

    def public_keys_of(self, hei_id: str) -> list[Any]:
        keys: list[Any] = []
        for host in self.hosts:
            if hei_id in host.hei_ids:
                keys.extend(host.server_public_keys)
        return keys

    def heis_covered_by(self, client_key_id: str) -> list[str]:
        covered: list[str] = []
        for host in self.hosts:
            if client_key_id in host.client_key_ids:
                covered.extend(h for h in host.hei_ids if h not in covered)
        return covered

    def api_entry_for_url(
        self, url: str, api_name: str, endpoint: ApiEndpoint
    ) -> Optional[ApiEntry]:
        for _, api in self._entries():
            if api.url == url and api.api_name == api_name and api.endpoint == endpoint:
                return api
        return None

    def all_hei_ids(self) -> list[str]:
        seen: list[str] = []
        for host in self.hosts:
            seen.extend(h for h in host.hei_ids if h not in seen)
        return seen

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StaticCatalogue":
        """Build a catalogue from its JSON representation.

        Raises:
            CatalogueError: If a required field is missing or malformed.
        """
        hosts = []
        for index, raw_host in enumerate(data.get("hosts", []), start=1):
            hei_ids = list(raw_host.get("hei_ids", []))
            try:
                apis = [_api_from_dict(raw_api, hei_ids) for raw_api in raw_host.get("apis", [])]
                server_keys = [
                    serialization.load_pem_public_key(pem.encode("ascii"))
                    for pem in raw_host.get("server_keys", [])
                ]
            except (KeyError, ValueError) as e:
                raise CatalogueError(f"Invalid entry for host #{index}: {e}") from e
            hosts.append(
                HostEntry(
                    name=raw_host.get("name", f"host-{index}"),
                    hei_ids=hei_ids,
                    apis=apis,
                    client_key_ids=list(raw_host.get("client_key_ids", [])),
                    server_public_keys=server_keys,
                )
            )
        return cls(hosts)

    @classmethod
    def load(cls, path: str) -> "StaticCatalogue":
        """Load a catalogue from a JSON file.

        Raises:
            CatalogueError: If the file is missing or invalid.
        """
        catalogue_file = Path(path)
        if not catalogue_file.exists():
            raise CatalogueError(f"Catalogue file not found: {path}")
        try:
            with open(catalogue_file, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise CatalogueError(f"Invalid JSON in catalogue file: {e}") from e
        catalogue = cls.from_dict(data)
        _LOG.info("Loaded catalogue with %d hosts from %s", len(catalogue.hosts), path)
        return catalogue


def _api_from_dict(raw: dict[str, Any], host_hei_ids: list[str]) -> ApiEntry:
    try:
        version = SemanticVersion.parse(raw["version"])
    except InvalidVersionString as e:
        raise ValueError(str(e)) from e
    entry = ApiEntry(
        api_name=raw["name"],
        endpoint=ApiEndpoint.from_name(raw.get("endpoint")),
        version=version,
        url=raw["url"],
        hei_ids=list(raw.get("hei_ids", host_hei_ids)),
        max_ids={key: int(value) for key, value in raw.get("max_ids", {}).items()},
    )
    if "client_auth" in raw:
        entry.client_auth = [ClientAuth(code) for code in raw["client_auth"]]
    if "server_auth" in raw:
        entry.server_auth = [ServerAuth(code) for code in raw["server_auth"]]
    return entry


@dataclass
class ImplementedApiCount:
    """How many hosts and institutions implement each version of one API."""

    name: str
    hosts_by_version: dict[str, set[str]] = field(default_factory=dict)
    heis_by_version: dict[str, set[str]] = field(default_factory=dict)

    def add(self, host_name: str, version: str, hei_ids: list[str]) -> None:
        self.hosts_by_version.setdefault(version, set()).add(host_name)
        self.heis_by_version.setdefault(version, set()).update(hei_ids)


def implemented_apis_count(catalogue: StaticCatalogue) -> list[ImplementedApiCount]:
    """Count hosts and institutions per implemented API, sorted by API name."""
    counts: dict[str, ImplementedApiCount] = {}
    for host in catalogue.hosts:
        for api in host.apis:
            count = counts.setdefault(api.api_name, ImplementedApiCount(api.api_name))
            count.add(host.name, str(api.version), api.hei_ids or host.hei_ids)
    return sorted(counts.values(), key=lambda count: count.name)
