"""Pod mutation logic for injecting the MCA proxy sidecar.

The proxy runs as the first init container (a native sidecar). Every other
container gets the service account mount swapped for the redirect volume and
KUBERNETES_SERVICE_HOST/PORT pointed at the proxy, so in-cluster clients talk to
the local proxy instead of the API server.

Injection is idempotent: running it on its own output changes nothing.
"""

from collections import Counter
from typing import Union

import yaml
from pydantic import ValidationError

from k8s_mca.config import InjectionConfig, RedirectPolicy
from k8s_mca.exceptions import ConfigurationMissingError, MalformedInputError, PodDecodeError, PodEncodeError
from k8s_mca.models import Container, EnvVar, Pod, SecurityContext, Volume, VolumeMount

SERVICE_HOST_ENV = "KUBERNETES_SERVICE_HOST"
SERVICE_PORT_ENV = "KUBERNETES_SERVICE_PORT"

# Same lifetime the kubelet uses for the default kube-api-access volume
TOKEN_EXPIRATION_SECONDS = 3607


def build_proxy_container(config: InjectionConfig) -> Container:
    """Build the default proxy sidecar from configuration.

    With automount disabled the sidecar mounts its own service account
    credentials at the real service account path.
    """
    return Container(
        name=config.sidecar_name,
        image=config.proxy_image,
        image_pull_policy=config.proxy_image_pull_policy,
        restart_policy="Always",
        security_context=SecurityContext(run_as_non_root=True, run_as_user=config.proxy_user_id),
        args=["proxy"],
        env=[EnvVar(name="NAMESPACE", value_from={"fieldRef": {"fieldPath": "metadata.namespace"}})],
        volume_mounts=[
            VolumeMount(name=config.redirect_volume_name, mount_path=config.redirect_mount_path),
            VolumeMount(
                name=config.proxy_credentials_volume_name, mount_path=config.service_account_path, read_only=True
            ),
        ],
    )


def build_credentials_volume(config: InjectionConfig) -> Volume:
    """Projected service account volume, shaped like the kubelet's kube-api-access-* volume."""
    return Volume(
        name=config.proxy_credentials_volume_name,
        projected={
            "defaultMode": 0o644,
            "sources": [
                {"serviceAccountToken": {"expirationSeconds": TOKEN_EXPIRATION_SECONDS, "path": "token"}},
                {"configMap": {"name": "kube-root-ca.crt", "items": [{"key": "ca.crt", "path": "ca.crt"}]}},
                {
                    "downwardAPI": {
                        "items": [
                            {"path": "namespace", "fieldRef": {"apiVersion": "v1", "fieldPath": "metadata.namespace"}}
                        ]
                    }
                },
            ],
        },
    )


class ProxyInjector:
    """Injects the proxy sidecar into pods according to a fixed configuration."""

    def __init__(self, config: InjectionConfig):
        self.config = config
        self._proxy_template = build_proxy_container(config)

    def inject(self, pod: Pod) -> Pod:
        """Return a copy of ``pod`` with the proxy sidecar injected.

        Args:
            pod: Pod to mutate. It is not modified.

        Returns:
            The mutated pod

        Raises:
            MalformedInputError: container or volume names are ambiguous
            ConfigurationMissingError: a sidecar image is needed but not configured
        """
        self._validate(pod)

        pod = pod.model_copy(deep=True)
        spec = pod.spec

        proxy_container = None
        other_init_containers = []
        for container in spec.init_containers or []:
            if container.name == self.config.sidecar_name:
                proxy_container = container
            else:
                other_init_containers.append(container)

        if proxy_container is None:
            proxy_container = self._default_proxy_container()
        elif not proxy_container.image:
            proxy_container.image = self._require_image()

        spec.init_containers = [proxy_container] + other_init_containers
        spec.automount_service_account_token = False

        for container in other_init_containers + spec.containers:
            if self._redirect_volume_mount(container):
                self._set_service_env(container)

        self._add_required_volumes(pod, proxy_container)

        return pod

    def _validate(self, pod: Pod):
        init_names = [c.name for c in pod.spec.init_containers or []]
        app_names = [c.name for c in pod.spec.containers]

        duplicates = sorted(name for name, count in Counter(init_names + app_names).items() if count > 1)
        if duplicates:
            raise MalformedInputError(f"duplicate container names: {', '.join(duplicates)}")

        volume_names = [v.name for v in pod.spec.volumes or []]
        duplicates = sorted(name for name, count in Counter(volume_names).items() if count > 1)
        if duplicates:
            raise MalformedInputError(f"duplicate volume names: {', '.join(duplicates)}")

        if self.config.sidecar_name in app_names:
            raise MalformedInputError(
                f"{self.config.sidecar_name} must be an init container, found it in containers"
            )

    def _require_image(self) -> str:
        if not self.config.proxy_image:
            raise ConfigurationMissingError("proxy image is not configured (set MCA_PROXY_IMAGE)")
        return self.config.proxy_image

    def _default_proxy_container(self) -> Container:
        self._require_image()
        return self._proxy_template.model_copy(deep=True)

    def _redirect_volume_mount(self, container: Container) -> bool:
        """Point the container's service account mount at the redirect volume.

        Returns:
            True if the container now mounts the redirect volume
        """
        mounts = list(container.volume_mounts or [])

        for mount in mounts:
            if mount.mount_path == self.config.service_account_path:
                mount.name = self.config.redirect_volume_name
                container.volume_mounts = mounts
                return True

        if self.config.redirect_policy == RedirectPolicy.MOUNTED_ONLY:
            return False

        mounts.append(
            VolumeMount(
                name=self.config.redirect_volume_name,
                mount_path=self.config.service_account_path,
                read_only=True,
            )
        )
        container.volume_mounts = mounts
        return True

    def _set_service_env(self, container: Container):
        env = list(container.env or [])
        wanted = [
            (SERVICE_HOST_ENV, self.config.service_host),
            (SERVICE_PORT_ENV, str(self.config.service_port)),
        ]

        for name, value in wanted:
            # Every duplicate is rewritten; Kubernetes uses the last one
            existing = [var for var in env if var.name == name]
            for var in existing:
                var.value = value
                var.value_from = None
            if not existing:
                env.append(EnvVar(name=name, value=value))

        container.env = env

    def _add_required_volumes(self, pod: Pod, proxy_container: Container):
        volumes = list(pod.spec.volumes or [])
        names = {volume.name for volume in volumes}

        if self.config.redirect_volume_name not in names:
            volumes.append(Volume(name=self.config.redirect_volume_name, empty_dir={}))

        # Adopted sidecars that bring their own credentials are left alone
        sidecar_mounts = {mount.name for mount in proxy_container.volume_mounts or []}
        credentials = self.config.proxy_credentials_volume_name
        if credentials in sidecar_mounts and credentials not in names:
            volumes.append(build_credentials_volume(self.config))

        pod.spec.volumes = volumes


def inject_proxy(pod: Pod, config: InjectionConfig) -> Pod:
    """Inject the proxy sidecar into ``pod`` and return the mutated copy."""
    return ProxyInjector(config).inject(pod)


def via_cli(pod_yaml: Union[bytes, str], config: InjectionConfig) -> bytes:
    """Inject the proxy sidecar into a single-document YAML pod manifest.

    Raises:
        PodDecodeError: the manifest is not exactly one valid pod
        PodEncodeError: the mutated pod could not be serialized
    """
    try:
        documents = [doc for doc in yaml.safe_load_all(pod_yaml) if doc is not None]
    except yaml.YAMLError as e:
        raise PodDecodeError(f"failed to unmarshal pod: {e}") from e

    if len(documents) != 1:
        raise PodDecodeError(f"failed to unmarshal pod: expected exactly one document, got {len(documents)}")
    if not isinstance(documents[0], dict):
        raise PodDecodeError("failed to unmarshal pod: document is not a mapping")

    try:
        pod = Pod.from_dict(documents[0])
    except ValidationError as e:
        raise PodDecodeError(f"failed to unmarshal pod: {e}") from e

    mutated_pod = inject_proxy(pod, config)

    try:
        return yaml.safe_dump(mutated_pod.to_dict(), sort_keys=False, default_flow_style=False).encode()
    except yaml.YAMLError as e:
        raise PodEncodeError(f"failed to marshal pod: {e}") from e


def via_webhook(pod: Pod, config: InjectionConfig) -> Pod:
    """Inject the proxy sidecar into a pod taken from an admission request."""
    return inject_proxy(pod, config)
