"""Tests for security descriptors and their combinatorics."""

import itertools

import pytest

from ewp_validator.security import (
    ClientAuth,
    InvalidDescriptor,
    RequestEncryption,
    ResponseEncryption,
    SecurityDescriptor,
    SecurityFilter,
    ServerAuth,
    enumerate_descriptors,
)


class TestSecurityDescriptor:
    """Tests for parsing and printing markers."""

    def test_parse(self):
        descriptor = SecurityDescriptor.parse("HTTT")
        assert descriptor.client_auth is ClientAuth.HTTP_SIG
        assert descriptor.server_auth is ServerAuth.TLS_CERT
        assert descriptor.request_encryption is RequestEncryption.TLS
        assert descriptor.response_encryption is ResponseEncryption.TLS

    @pytest.mark.parametrize("marker", ["SHTT", "ATTT", "HHTT"])
    def test_str_gives_back_marker(self, marker):
        assert str(SecurityDescriptor.parse(marker)) == marker

    @pytest.mark.parametrize("marker", ["", "HTT", "HTTTT"])
    def test_wrong_length(self, marker):
        with pytest.raises(InvalidDescriptor):
            SecurityDescriptor.parse(marker)

    def test_unknown_character(self):
        """The error should name the family with the unknown method."""
        with pytest.raises(InvalidDescriptor, match="ServerAuth"):
            SecurityDescriptor.parse("HXTT")

    def test_equality_is_field_wise(self):
        assert SecurityDescriptor.parse("SHTT") == SecurityDescriptor(
            ClientAuth.TLS_CERT_SELF_SIGNED, ServerAuth.HTTP_SIG
        )

    def test_matches_without_filter(self):
        assert SecurityDescriptor.parse("SHTT").matches(None)


class TestSecurityFilter:
    """Tests for wildcard filters."""

    def test_none_accepts_everything(self):
        security_filter = SecurityFilter.parse(None)
        assert security_filter.accepts(SecurityDescriptor.parse("ATTT"))
        assert str(security_filter) == "****"

    def test_wildcard_field(self):
        security_filter = SecurityFilter.parse("H***")
        assert security_filter.accepts(SecurityDescriptor.parse("HTTT"))
        assert security_filter.accepts(SecurityDescriptor.parse("HHTT"))
        assert not security_filter.accepts(SecurityDescriptor.parse("STTT"))

    def test_exact_filter(self):
        security_filter = SecurityFilter.parse("SHTT")
        assert SecurityDescriptor.parse("SHTT").matches(security_filter)
        assert not SecurityDescriptor.parse("STTT").matches(security_filter)

    def test_invalid_filter(self):
        with pytest.raises(InvalidDescriptor):
            SecurityFilter.parse("Z***")


class TestEnumerateDescriptors:
    """Tests for the cross-product of advertised methods."""

    def test_cross_product(self):
        """Every advertised pair should be present exactly once."""
        client = [ClientAuth.TLS_CERT_SELF_SIGNED, ClientAuth.HTTP_SIG, ClientAuth.NONE]
        server = [ServerAuth.TLS_CERT, ServerAuth.HTTP_SIG]

        descriptors = enumerate_descriptors(client, server)

        expected = [SecurityDescriptor(c, s) for c, s in itertools.product(client, server)]
        assert descriptors == expected

    def test_advertised_order_is_kept(self):
        descriptors = enumerate_descriptors(
            [ClientAuth.HTTP_SIG, ClientAuth.TLS_CERT_SELF_SIGNED], [ServerAuth.TLS_CERT]
        )
        assert [str(d) for d in descriptors] == ["HTTT", "STTT"]

    def test_no_duplicates(self):
        descriptors = enumerate_descriptors(
            [ClientAuth.HTTP_SIG, ClientAuth.HTTP_SIG],
            [ServerAuth.TLS_CERT, ServerAuth.TLS_CERT],
        )
        assert [str(d) for d in descriptors] == ["HTTT"]

    def test_empty_family_gives_nothing(self):
        assert enumerate_descriptors([], [ServerAuth.TLS_CERT]) == []
