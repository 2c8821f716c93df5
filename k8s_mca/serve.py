"""Startup sequences for the MCA proxy sidecar and the MCA webhook.

The proxy writes substitute service account files (CA bundle, namespace and a
placeholder token) into the redirect volume, which application containers
mount in place of their real service account credentials.
"""

import ipaddress
import logging
import os
from pathlib import Path
from typing import Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from k8s_mca.certs import generate_ca_and_tls_cert
from k8s_mca.config import Settings
from k8s_mca.controllers.webhook_config import WebhookConfigController
from k8s_mca.controllers.webhook_controller import MCAWebhookController
from k8s_mca.exceptions import MCAError
from k8s_mca.proxy import KubeAPIProxy, Upstream
from k8s_mca.webhook_server import WebhookServer

logger = logging.getLogger(__name__)

PROXY_DNS_NAMES = ["localhost"]
PROXY_IP_ADDRESSES = [ipaddress.ip_address("127.0.0.1"), ipaddress.ip_address("::1")]


def load_kube_configuration(context: Optional[str] = None) -> client.Configuration:
    """Load in-cluster configuration, falling back to the local kubeconfig."""
    configuration = client.Configuration()
    try:
        config.load_incluster_config(client_configuration=configuration)
        logger.info("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config(context=context, client_configuration=configuration)
            logger.info(f"Loaded local Kubernetes configuration (context={context})")
        except (config.ConfigException, OSError) as e:
            raise MCAError(f"failed to load Kubernetes configuration: {e}") from e
    return configuration


def _resolve(settings: Settings, path: str) -> Path:
    return Path(settings.fs_root) / path.lstrip("/")


def _write_file(path: Path, data: bytes):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def write_ca_certificate(settings: Settings, ca_cert_pem: bytes) -> Path:
    path = _resolve(settings, f"{settings.injection.redirect_mount_path}/ca.crt")
    try:
        _write_file(path, ca_cert_pem)
    except OSError as e:
        raise MCAError(f"failed to write CA certificate: {e}") from e

    logger.info(f"CA certificate saved to: {path}")
    return path


def write_namespace_file(settings: Settings) -> Path:
    """Publish the pod namespace next to the substitute credentials.

    The sidecar gets its namespace through the downward API (NAMESPACE); the
    real service account namespace file is the fallback.
    """
    path = _resolve(settings, f"{settings.injection.redirect_mount_path}/namespace")

    namespace = os.getenv("NAMESPACE")
    if namespace:
        data = namespace.encode()
    else:
        source = _resolve(settings, f"{settings.injection.service_account_path}/namespace")
        try:
            data = source.read_bytes()
        except OSError as e:
            raise MCAError(f"failed to read namespace file: {e}") from e

    try:
        _write_file(path, data)
    except OSError as e:
        raise MCAError(f"failed to write namespace file: {e}") from e

    logger.info(f"Namespace file written to: {path}")
    return path


def write_token_file(settings: Settings) -> Path:
    """Write a placeholder token; the proxy supplies the real credentials."""
    path = _resolve(settings, f"{settings.injection.redirect_mount_path}/token")
    try:
        _write_file(path, b"-")
    except OSError as e:
        raise MCAError(f"failed to write token file: {e}") from e

    logger.info(f"Placeholder token file created at: {path}")
    return path


async def start_proxy(settings: Settings):
    """Prepare the substitute credentials and run the proxy server."""
    logger.info("Starting MCA Proxy...")

    try:
        bundle = generate_ca_and_tls_cert(PROXY_DNS_NAMES, PROXY_IP_ADDRESSES)
    except ValueError as e:
        raise MCAError(f"failed to generate certificates: {e}") from e

    write_ca_certificate(settings, bundle.ca_cert_pem)
    write_namespace_file(settings)
    write_token_file(settings)

    upstream = Upstream.from_configuration(load_kube_configuration(settings.kube_context))
    proxy = KubeAPIProxy(upstream)

    logger.info("Starting proxy server...")
    await proxy.start_server(
        settings.injection.service_host, settings.injection.service_port, ssl_context=bundle.server_ssl_context()
    )


async def start_webhook(settings: Settings, admission_api: Optional[client.AdmissionregistrationV1Api] = None):
    """Register the webhook with the API server and run the webhook server."""
    logger.info("Starting MCA Webhook...")

    try:
        bundle = generate_ca_and_tls_cert(settings.webhook.dns_names)
    except ValueError as e:
        raise MCAError(f"failed to generate webhook certificates: {e}") from e

    if admission_api is None:
        configuration = load_kube_configuration(settings.kube_context)
        admission_api = client.AdmissionregistrationV1Api(client.ApiClient(configuration))

    try:
        WebhookConfigController(admission_api, settings.webhook).apply(bundle.ca_cert_pem)
    except ApiException as e:
        raise MCAError(f"failed to apply mutating webhook: {e}") from e

    server = WebhookServer(MCAWebhookController(settings.injection))

    logger.info("Starting webhook server...")
    await server.start_server("0.0.0.0", settings.webhook.port, ssl_context=bundle.server_ssl_context())
