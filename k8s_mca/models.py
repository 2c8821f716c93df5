"""Pod document model.

Only the fields sidecar injection reads or writes are declared. Everything else
(resources, ports, nodeSelector, status, ...) is carried through untouched as
extra fields, so a pod survives a parse/serialize cycle without losing data.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class K8sModel(BaseModel):
    """Base for Kubernetes objects: camelCase on the wire, unknown fields preserved."""

    model_config = ConfigDict(extra="allow", populate_by_name=True, alias_generator=to_camel)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        return cls.model_validate(data)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class EnvVar(K8sModel):
    name: str
    value: Optional[str] = None
    value_from: Optional[Dict[str, Any]] = None


class VolumeMount(K8sModel):
    name: str
    mount_path: str
    read_only: Optional[bool] = None


class SecurityContext(K8sModel):
    run_as_non_root: Optional[bool] = None
    run_as_user: Optional[int] = None


class Container(K8sModel):
    name: str
    image: Optional[str] = None
    image_pull_policy: Optional[str] = None
    # Only meaningful on init containers; "Always" makes it a sidecar
    restart_policy: Optional[str] = None
    command: Optional[List[str]] = None
    args: Optional[List[str]] = None
    env: Optional[List[EnvVar]] = None
    volume_mounts: Optional[List[VolumeMount]] = None
    security_context: Optional[SecurityContext] = None


class Volume(K8sModel):
    name: str
    empty_dir: Optional[Dict[str, Any]] = None
    projected: Optional[Dict[str, Any]] = None


class PodSpec(K8sModel):
    init_containers: Optional[List[Container]] = None
    containers: List[Container] = Field(default_factory=list)
    volumes: Optional[List[Volume]] = None
    automount_service_account_token: Optional[bool] = None


class ObjectMeta(K8sModel):
    name: Optional[str] = None
    namespace: Optional[str] = None
    labels: Optional[Dict[str, str]] = None
    annotations: Optional[Dict[str, str]] = None


class Pod(K8sModel):
    api_version: Optional[str] = None
    kind: Optional[str] = None
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: PodSpec = Field(default_factory=PodSpec)
