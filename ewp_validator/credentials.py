"""Credentials the validator uses when acting as an EWP client.

The main key store is used for all regular requests. An optional second key
store represents "another EWP participant" and is used by permission tests
which check that data is not leaked to institutions other than the owner.
"""

import datetime
import hashlib
from dataclasses import dataclass, field
from logging import getLogger
from pathlib import Path
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from ewp_validator.models import ValidatorError

_LOG = getLogger(__name__)

KEY_SIZE = 2048
CERTIFICATE_VALIDITY_DAYS = 365


class NoUsableCredential(ValidatorError):
    """Raised when the credential needed by a security method is unavailable.

    This means the method cannot be tested, not that the target is faulty.
    """

    pass


def key_id_of(public_key) -> str:
    """SHA-256 hex fingerprint of a public key, as used for HTTP signature key ids."""
    der = public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return hashlib.sha256(der).hexdigest()


@dataclass
class KeyStore:
    """One client identity: signing key, TLS certificate and covered HEIs."""

    private_key: Optional[rsa.RSAPrivateKey] = None
    certificate: Optional[x509.Certificate] = None
    key_path: Optional[Path] = None
    cert_path: Optional[Path] = None
    covered_hei_ids: list[str] = field(default_factory=list)
    generated_at: Optional[datetime.datetime] = None

    @property
    def key_id(self) -> Optional[str]:
        if self.private_key is None:
            return None
        return key_id_of(self.private_key.public_key())

    @property
    def has_tls_identity(self) -> bool:
        return self.cert_path is not None and self.key_path is not None

    @classmethod
    def load(
        cls,
        key_path: str,
        cert_path: Optional[str] = None,
        covered_hei_ids: Optional[list[str]] = None,
    ) -> "KeyStore":
        """Load a key store from PEM files.

        Args:
            key_path: Path to an unencrypted PEM private key
            cert_path: Optional path to the matching PEM certificate
            covered_hei_ids: HEIs this identity is registered to cover

        Returns:
            The loaded KeyStore
        """
        key_file = Path(key_path)
        private_key = serialization.load_pem_private_key(key_file.read_bytes(), password=None)
        certificate = None
        cert_file = Path(cert_path) if cert_path else None
        if cert_file is not None:
            certificate = x509.load_pem_x509_certificate(cert_file.read_bytes())
        return cls(
            private_key=private_key,
            certificate=certificate,
            key_path=key_file,
            cert_path=cert_file,
            covered_hei_ids=list(covered_hei_ids or []),
        )

    @classmethod
    def generate(
        cls,
        covered_hei_ids: Optional[list[str]] = None,
        directory: Optional[str] = None,
        common_name: str = "EWP Validator",
    ) -> "KeyStore":
        """Create a fresh RSA key and a self-signed certificate.

        When ``directory`` is given, both are written there as PEM files so
        they can be used as a TLS client identity.
        """
        now = datetime.datetime.now(datetime.timezone.utc)
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        certificate = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(minutes=5))
            .not_valid_after(now + datetime.timedelta(days=CERTIFICATE_VALIDITY_DAYS))
            .sign(private_key, hashes.SHA256())
        )

        key_path = cert_path = None
        if directory is not None:
            target = Path(directory)
            target.mkdir(parents=True, exist_ok=True)
            key_path = target / "validator-key.pem"
            cert_path = target / "validator-cert.pem"
            key_path.write_bytes(
                private_key.private_bytes(
                    serialization.Encoding.PEM,
                    serialization.PrivateFormat.PKCS8,
                    serialization.NoEncryption(),
                )
            )
            cert_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
            _LOG.info("Generated validator credentials in %s", target)

        return cls(
            private_key=private_key,
            certificate=certificate,
            key_path=key_path,
            cert_path=cert_path,
            covered_hei_ids=list(covered_hei_ids or []),
            generated_at=now,
        )


@dataclass
class CredentialStore:
    """The validator's own identities. Read-only once built."""

    main: KeyStore
    other: Optional[KeyStore] = None

    def identity(self, as_other_participant: bool = False) -> KeyStore:
        """Return the key store to use for a request.

        Raises:
            NoUsableCredential: If the other participant identity is requested
                but not configured.
        """
        if not as_other_participant:
            return self.main
        if self.other is None:
            raise NoUsableCredential("No credentials configured for another EWP participant")
        return self.other
