"""Tests for certificate generation."""

import ipaddress
import ssl
import tempfile

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from k8s_mca.certs import generate_ca_and_tls_cert


@pytest.fixture(scope="module")
def bundle():
    return generate_ca_and_tls_cert(
        ["mca-webhook", "mca-webhook.default.svc"], ip_addresses=[ipaddress.ip_address("127.0.0.1")]
    )


class TestGenerateCertificates:
    """Test the CA and server certificate."""

    def test_subject_alternative_names(self, bundle):
        cert = x509.load_pem_x509_certificate(bundle.cert_pem)
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value

        assert san.get_values_for_type(x509.DNSName) == ["mca-webhook", "mca-webhook.default.svc"]
        assert san.get_values_for_type(x509.IPAddress) == [ipaddress.ip_address("127.0.0.1")]
        assert cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value == "mca-webhook"

    def test_server_certificate_is_signed_by_ca(self, bundle):
        """Test the server certificate chains to the bundled CA."""
        cert = x509.load_pem_x509_certificate(bundle.cert_pem)
        ca_cert = x509.load_pem_x509_certificate(bundle.ca_cert_pem)

        assert cert.issuer == ca_cert.subject
        ca_cert.public_key().verify(
            cert.signature,
            cert.tbs_certificate_bytes,
            padding.PKCS1v15(),
            cert.signature_hash_algorithm,
        )

    def test_ca_certificate(self, bundle):
        ca_cert = x509.load_pem_x509_certificate(bundle.ca_cert_pem)

        assert ca_cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca is True
        assert ca_cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value == "MCA CA"
        assert ca_cert.subject.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)[0].value == "MCA"

    def test_server_certificate_usage(self, bundle):
        cert = x509.load_pem_x509_certificate(bundle.cert_pem)

        assert cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca is False
        usage = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        assert ExtendedKeyUsageOID.SERVER_AUTH in list(usage)

    def test_common_name_defaults_to_localhost(self):
        bundle = generate_ca_and_tls_cert([], ip_addresses=[ipaddress.ip_address("::1")])
        cert = x509.load_pem_x509_certificate(bundle.cert_pem)

        assert cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value == "localhost"

    def test_each_call_uses_a_fresh_ca(self, bundle):
        other = generate_ca_and_tls_cert(["mca-webhook"])

        assert other.ca_cert_pem != bundle.ca_cert_pem


class TestServerSSLContext:
    """Test building a server TLS context from a bundle."""

    def test_serves_bundled_certificate(self, bundle):
        """Test a client trusting the bundled CA completes a handshake."""
        server_context = bundle.server_ssl_context()
        client_context = ssl.create_default_context(cadata=bundle.ca_cert_pem.decode())

        client_in, client_out = ssl.MemoryBIO(), ssl.MemoryBIO()
        server_in, server_out = ssl.MemoryBIO(), ssl.MemoryBIO()
        client = client_context.wrap_bio(client_in, client_out, server_hostname="mca-webhook")
        server = server_context.wrap_bio(server_in, server_out, server_side=True)

        done = {client: False, server: False}
        for _ in range(10):
            for side in (client, server):
                if not done[side]:
                    try:
                        side.do_handshake()
                        done[side] = True
                    except ssl.SSLWantReadError:
                        pass
            server_in.write(client_out.read())
            client_in.write(server_out.read())
            if all(done.values()):
                break

        assert all(done.values())
        assert dict(field[0] for field in client.getpeercert()["subject"])["commonName"] == "mca-webhook"

    def test_key_material_is_removed(self, bundle, tmp_path, monkeypatch):
        """Test no certificate or key files are left on disk."""
        monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))

        bundle.server_ssl_context()

        assert list(tmp_path.iterdir()) == []
