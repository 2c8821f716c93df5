"""k8s-mca - Kubernetes API proxy sidecar injector."""

__version__ = "0.1.0"
