"""Shared fixtures for k8s-mca tests."""

import pytest

from k8s_mca.config import InjectionConfig

PROXY_IMAGE = "ghcr.io/marxus/k8s-mca:test"
SA_PATH = "/var/run/secrets/kubernetes.io/serviceaccount"


@pytest.fixture
def config():
    """Injection config with a proxy image set."""
    return InjectionConfig(proxy_image=PROXY_IMAGE)


@pytest.fixture
def basic_pod_dict():
    """Pod with one app container mounting the service account."""
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": "test-pod", "namespace": "default"},
        "spec": {
            "containers": [
                {
                    "name": "app",
                    "image": "nginx",
                    "volumeMounts": [{"name": "kube-api-access", "mountPath": SA_PATH}],
                }
            ]
        },
    }
