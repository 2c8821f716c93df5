"""Runtime configuration for the injector, the proxy sidecar and the webhook.

Values are read from the environment once at startup and passed explicitly to
the code that needs them, so the injection engine stays a function of
(pod, config).
"""

import os
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

SERVICE_ACCOUNT_PATH = "/var/run/secrets/kubernetes.io/serviceaccount"
MCA_SERVICE_ACCOUNT_PATH = "/var/run/secrets/kubernetes.io/mca-serviceaccount"
INJECT_LABEL = "mca.k8s.io/inject"


class RedirectPolicy(str, Enum):
    """Which containers get redirected to the proxy."""

    # Every container gets the redirect mount and the service env vars
    ALWAYS = "always"
    # Only containers that already mount the service account path
    MOUNTED_ONLY = "mounted-only"


class InjectionConfig(BaseModel):
    """Configuration consumed by the injection engine."""

    proxy_image: str = Field(default="", description="Image reference for the proxy sidecar")
    proxy_image_pull_policy: str = Field(default="IfNotPresent", description="Pull policy for the proxy sidecar")
    proxy_user_id: int = Field(default=999, description="Non-root UID the sidecar runs as")
    sidecar_name: str = Field(default="mca-proxy", description="Name of the proxy init container")

    service_account_path: str = Field(
        default=SERVICE_ACCOUNT_PATH, description="Mount path of the real service account credentials"
    )
    redirect_volume_name: str = Field(
        default="kube-api-access-mca-sa", description="Volume holding the substitute credentials"
    )
    proxy_credentials_volume_name: str = Field(
        default="kube-api-access-mca-proxy", description="Projected service account volume mounted by the sidecar"
    )
    redirect_mount_path: str = Field(
        default=MCA_SERVICE_ACCOUNT_PATH, description="Where the sidecar writes the substitute credentials"
    )

    service_host: str = Field(default="127.0.0.1", description="Value for KUBERNETES_SERVICE_HOST")
    service_port: int = Field(default=6443, description="Value for KUBERNETES_SERVICE_PORT and proxy listen port")

    redirect_policy: RedirectPolicy = Field(default=RedirectPolicy.ALWAYS, description="Redirection scope")

    @classmethod
    def from_env(cls) -> "InjectionConfig":
        """Load injection configuration from MCA_* environment variables."""
        overrides = {
            "proxy_image": os.getenv("MCA_PROXY_IMAGE"),
            "proxy_image_pull_policy": os.getenv("MCA_PROXY_IMAGE_PULL_POLICY"),
            "service_host": os.getenv("MCA_SERVICE_HOST"),
            "service_port": os.getenv("MCA_SERVICE_PORT"),
            "redirect_policy": os.getenv("MCA_REDIRECT_POLICY"),
        }
        return cls(**{k: v for k, v in overrides.items() if v})


class WebhookConfig(BaseModel):
    """Configuration for the admission webhook and its registration."""

    webhook_name: str = Field(default="mca-webhook", description="MutatingWebhookConfiguration name")
    service_name: str = Field(default="mca-webhook", description="Service fronting the webhook server")
    namespace: str = Field(default="default", description="Namespace of the webhook service")
    port: int = Field(default=8443, description="HTTPS port the webhook server listens on")

    @classmethod
    def from_env(cls) -> "WebhookConfig":
        overrides = {
            "webhook_name": os.getenv("MCA_WEBHOOK_NAME"),
            "service_name": os.getenv("MCA_WEBHOOK_SERVICE"),
            "namespace": os.getenv("MCA_WEBHOOK_NAMESPACE"),
            "port": os.getenv("MCA_WEBHOOK_PORT"),
        }
        return cls(**{k: v for k, v in overrides.items() if v})

    @property
    def dns_names(self) -> List[str]:
        """DNS names the webhook service is reachable under."""
        svc = self.service_name
        ns = self.namespace
        return [svc, f"{svc}.{ns}", f"{svc}.{ns}.svc", f"{svc}.{ns}.svc.cluster.local"]


class Settings(BaseModel):
    """Everything the CLI needs to run one of its commands."""

    injection: InjectionConfig = Field(default_factory=InjectionConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)

    # Prefix for every filesystem path the proxy sidecar touches
    fs_root: str = Field(default="/", description="Filesystem root for credential files")
    kube_context: Optional[str] = Field(default=None, description="kubeconfig context used outside the cluster")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            injection=InjectionConfig.from_env(),
            webhook=WebhookConfig.from_env(),
            fs_root=os.getenv("MCA_FS_ROOT") or "/",
            kube_context=os.getenv("K8S_MCA_CTX") or None,
        )
