"""Shared fixtures.

Generating RSA keys is slow, so the validator identities are created once
per session.
"""

import pytest

from ewp_validator.credentials import CredentialStore, KeyStore
from ewp_validator.models import SemanticVersion
from ewp_validator.request_builder import RequestBuilder
from ewp_validator.steps import StepContext, SuiteState

from fakes import (
    OTHER_HEI,
    VALIDATOR_HEI,
    FakeTransport,
    build_catalogue,
    client_keys,
    default_services,
)


@pytest.fixture(scope="session")
def main_keys():
    return KeyStore.generate([VALIDATOR_HEI])


@pytest.fixture(scope="session")
def other_keys():
    return KeyStore.generate([OTHER_HEI])


@pytest.fixture(scope="session")
def server_key():
    return KeyStore.generate().private_key


@pytest.fixture
def credentials(main_keys, other_keys):
    return CredentialStore(main=main_keys, other=other_keys)


@pytest.fixture
def catalogue(credentials):
    return build_catalogue(credentials)


@pytest.fixture
def transport(catalogue, credentials):
    return FakeTransport(catalogue, default_services(), client_keys=client_keys(credentials))


@pytest.fixture
def make_context(catalogue, credentials, transport):
    """Factory for a context of one API, without a combination."""

    def make(api_info, url, version="2.0.0", params=None, **overrides):
        state = SuiteState(url=url, version=SemanticVersion.parse(version))
        if params is not None:
            state.parameters = params
        options = {
            "api_info": api_info,
            "state": state,
            "catalogue": catalogue,
            "credentials": credentials,
            "transport": transport,
            "builder": RequestBuilder(catalogue, credentials, api_info.api_name, api_info.endpoint),
            "timeout": 1.0,
        }
        options.update(overrides)
        return StepContext(**options)

    return make
