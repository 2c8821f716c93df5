"""Throwaway CA and server certificate generation for the proxy and the webhook."""

import datetime
import ipaddress
import os
import ssl
import tempfile
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

VALIDITY = datetime.timedelta(days=365)


@dataclass(frozen=True)
class CertificateBundle:
    """PEM-encoded server certificate, its key, and the CA that signed it."""

    cert_pem: bytes
    key_pem: bytes
    ca_cert_pem: bytes

    def server_ssl_context(self) -> ssl.SSLContext:
        """Build a server-side TLS context from this bundle.

        The ssl module only loads key material from files. The certificate and
        key go to a private temporary directory that is removed once loaded.
        """
        context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)

        with tempfile.TemporaryDirectory(prefix="mca-certs-") as directory:
            cert_path = os.path.join(directory, "tls.crt")
            key_path = os.path.join(directory, "tls.key")

            with open(cert_path, "wb") as f:
                f.write(self.cert_pem)
            fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(self.key_pem)

            context.load_cert_chain(cert_path, key_path)

        return context


def _generate_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _generate_ca() -> Tuple[rsa.RSAPrivateKey, x509.Certificate]:
    key = _generate_key()
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "MCA"),
            x509.NameAttribute(NameOID.COMMON_NAME, "MCA CA"),
        ]
    )
    now = datetime.datetime.now(datetime.timezone.utc)

    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + VALIDITY)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .sign(key, hashes.SHA256())
    )
    return key, cert


def generate_ca_and_tls_cert(
    dns_names: Sequence[str], ip_addresses: Optional[Sequence[IPAddress]] = None
) -> CertificateBundle:
    """Generate a CA and a server certificate it signs.

    Args:
        dns_names: DNS subject alternative names for the server certificate
        ip_addresses: IP subject alternative names for the server certificate

    Returns:
        CertificateBundle with the server certificate, key and CA certificate
    """
    ca_key, ca_cert = _generate_ca()
    server_key = _generate_key()
    now = datetime.datetime.now(datetime.timezone.utc)

    alt_names: List[x509.GeneralName] = [x509.DNSName(name) for name in dns_names]
    alt_names += [x509.IPAddress(ip) for ip in ip_addresses or []]
    common_name = dns_names[0] if dns_names else "localhost"

    cert = (
        x509.CertificateBuilder()
        .subject_name(
            x509.Name(
                [
                    x509.NameAttribute(NameOID.ORGANIZATION_NAME, "MCA"),
                    x509.NameAttribute(NameOID.COMMON_NAME, common_name),
                ]
            )
        )
        .issuer_name(ca_cert.subject)
        .public_key(server_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + VALIDITY)
        .add_extension(x509.SubjectAlternativeName(alt_names), critical=False)
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(server_key.public_key()), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()), critical=False
        )
        .sign(ca_key, hashes.SHA256())
    )

    return CertificateBundle(
        cert_pem=cert.public_bytes(serialization.Encoding.PEM),
        key_pem=server_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        ),
        ca_cert_pem=ca_cert.public_bytes(serialization.Encoding.PEM),
    )
