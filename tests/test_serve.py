"""Tests for the proxy and webhook startup sequences."""

from unittest.mock import AsyncMock, Mock, patch

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from k8s_mca.config import InjectionConfig, Settings, WebhookConfig
from k8s_mca.exceptions import MCAError
from k8s_mca.serve import (
    start_proxy,
    start_webhook,
    write_ca_certificate,
    write_namespace_file,
    write_token_file,
)

MCA_SA_DIR = "var/run/secrets/kubernetes.io/mca-serviceaccount"
SA_DIR = "var/run/secrets/kubernetes.io/serviceaccount"


@pytest.fixture
def settings(tmp_path):
    return Settings(injection=InjectionConfig(proxy_image="mca:test"), fs_root=str(tmp_path))


class TestCredentialFiles:
    """Test the substitute service account files."""

    def test_write_ca_certificate(self, settings, tmp_path):
        path = write_ca_certificate(settings, b"CA PEM")

        assert path == tmp_path / MCA_SA_DIR / "ca.crt"
        assert path.read_bytes() == b"CA PEM"

    def test_write_token_file(self, settings, tmp_path):
        path = write_token_file(settings)

        assert path == tmp_path / MCA_SA_DIR / "token"
        assert path.read_bytes() == b"-"

    def test_namespace_from_env(self, settings, tmp_path, monkeypatch):
        monkeypatch.setenv("NAMESPACE", "team-a")

        path = write_namespace_file(settings)

        assert path == tmp_path / MCA_SA_DIR / "namespace"
        assert path.read_text() == "team-a"

    def test_namespace_from_service_account(self, settings, tmp_path, monkeypatch):
        """Test the real service account namespace file is the fallback."""
        monkeypatch.delenv("NAMESPACE", raising=False)
        source = tmp_path / SA_DIR / "namespace"
        source.parent.mkdir(parents=True)
        source.write_text("team-b")

        path = write_namespace_file(settings)

        assert path.read_text() == "team-b"

    def test_namespace_missing(self, settings, monkeypatch):
        monkeypatch.delenv("NAMESPACE", raising=False)

        with pytest.raises(MCAError, match="failed to read namespace file"):
            write_namespace_file(settings)

    def test_write_failure(self, tmp_path):
        """Test write errors surface as MCAError."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        settings = Settings(fs_root=str(blocker))

        with pytest.raises(MCAError, match="failed to write token file"):
            write_token_file(settings)


class TestStartProxy:
    """Test the proxy startup sequence."""

    @pytest.mark.asyncio
    async def test_start_proxy(self, settings, tmp_path, monkeypatch):
        monkeypatch.setenv("NAMESPACE", "team-a")
        configuration = client.Configuration(host="https://10.0.0.1:443")

        with patch("k8s_mca.serve.load_kube_configuration", return_value=configuration) as mock_load, patch(
            "k8s_mca.serve.KubeAPIProxy"
        ) as mock_proxy:
            mock_proxy.return_value.start_server = AsyncMock()

            await start_proxy(settings)

        mock_load.assert_called_once_with(None)
        upstream = mock_proxy.call_args[0][0]
        assert upstream.base_url == "https://10.0.0.1:443"

        args, kwargs = mock_proxy.return_value.start_server.call_args
        assert args == ("127.0.0.1", 6443)
        assert kwargs["ssl_context"] is not None

        files = tmp_path / MCA_SA_DIR
        assert (files / "ca.crt").read_bytes().startswith(b"-----BEGIN CERTIFICATE-----")
        assert (files / "namespace").read_text() == "team-a"
        assert (files / "token").read_bytes() == b"-"


class TestStartWebhook:
    """Test the webhook startup sequence."""

    @pytest.mark.asyncio
    async def test_start_webhook(self, settings):
        admission_api = Mock(spec=client.AdmissionregistrationV1Api)
        settings.webhook = WebhookConfig(namespace="mca-system", port=9443)

        with patch("k8s_mca.serve.WebhookServer") as mock_server:
            mock_server.return_value.start_server = AsyncMock()

            await start_webhook(settings, admission_api=admission_api)

        body = admission_api.create_mutating_webhook_configuration.call_args[0][0]
        assert body.webhooks[0].client_config.service.namespace == "mca-system"

        controller = mock_server.call_args[0][0]
        assert controller.config == settings.injection

        args, kwargs = mock_server.return_value.start_server.call_args
        assert args == ("0.0.0.0", 9443)
        assert kwargs["ssl_context"] is not None

    @pytest.mark.asyncio
    async def test_start_webhook_registration_failure(self, settings):
        """Test an API error while registering stops startup."""
        admission_api = Mock(spec=client.AdmissionregistrationV1Api)
        admission_api.create_mutating_webhook_configuration.side_effect = ApiException(status=403)

        with patch("k8s_mca.serve.WebhookServer") as mock_server:
            with pytest.raises(MCAError, match="failed to apply mutating webhook"):
                await start_webhook(settings, admission_api=admission_api)

        mock_server.assert_not_called()
