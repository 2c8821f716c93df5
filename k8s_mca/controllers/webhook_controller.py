"""Mutating admission webhook for MCA proxy injection.

The webhook receives pods labelled for injection (the objectSelector filters
upstream), runs the injection engine, and answers with a JSON patch that
replaces the whole pod spec with the mutated one.
"""

import base64
import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from k8s_mca.config import InjectionConfig
from k8s_mca.exceptions import MCAError
from k8s_mca.inject import ProxyInjector
from k8s_mca.models import Pod

logger = logging.getLogger(__name__)


class MCAWebhookController:
    """Mutating admission webhook controller for MCA proxy injection."""

    def __init__(self, config: InjectionConfig):
        self.config = config
        self.injector = ProxyInjector(config)

    def mutate(self, admission_review: Dict[str, Any]) -> Dict[str, Any]:
        """Inject the proxy sidecar into the pod carried by an AdmissionReview.

        Args:
            admission_review: AdmissionReview body sent by the API server

        Returns:
            AdmissionReview body with the response, allowed with a patch or denied
        """
        request = admission_review.get("request") or {}
        if not isinstance(request, dict):
            return self._deny_response("Failed to unmarshal pod", "admission request is not an object")
        uid = request.get("uid", "")

        pod_dict = request.get("object")
        if not isinstance(pod_dict, dict):
            return self._deny_response("Failed to unmarshal pod", "admission request carries no pod object", uid)

        try:
            pod = Pod.from_dict(pod_dict)
        except ValidationError as e:
            return self._deny_response("Failed to unmarshal pod", e, uid)

        try:
            mutated_pod = self.injector.inject(pod)
        except MCAError as e:
            return self._deny_response("Failed to inject MCA", e, uid)

        try:
            patches = self._generate_json_patch(mutated_pod)
        except (TypeError, ValueError) as e:
            return self._deny_response("Failed to generate JSON patch", e, uid)

        logger.info(f"Applied MCA injection to pod {pod.metadata.namespace}/{pod.metadata.name}")

        return self._mutate_response(patches, uid)

    def _generate_json_patch(self, mutated_pod: Pod) -> List[Dict[str, Any]]:
        """Replace the whole spec rather than diffing field by field."""
        patches = [{"op": "replace", "path": "/spec", "value": mutated_pod.spec.to_dict()}]
        # Fail here rather than while encoding the response
        json.dumps(patches)
        return patches

    def _mutate_response(self, patches: List[Dict[str, Any]], uid: str = "") -> Dict[str, Any]:
        """Generate admission response with mutations."""
        patch_bytes = json.dumps(patches).encode()
        patch_b64 = base64.b64encode(patch_bytes).decode()

        return {
            "apiVersion": "admission.k8s.io/v1",
            "kind": "AdmissionReview",
            "response": {
                "uid": uid,
                "allowed": True,
                "patchType": "JSONPatch",
                "patch": patch_b64,
            },
        }

    def _deny_response(self, message: str, error: Optional[Any] = None, uid: str = "") -> Dict[str, Any]:
        """Generate admission response that denies the pod."""
        if error is not None:
            message = f"{message}: {error}"
        logger.error(message)

        return {
            "apiVersion": "admission.k8s.io/v1",
            "kind": "AdmissionReview",
            "response": {"uid": uid, "allowed": False, "status": {"message": message}},
        }
