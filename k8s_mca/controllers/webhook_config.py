"""Registration of the MutatingWebhookConfiguration that routes pods to the webhook."""

import base64
import logging

from kubernetes import client
from kubernetes.client.rest import ApiException

from k8s_mca.config import INJECT_LABEL, WebhookConfig

logger = logging.getLogger(__name__)


class WebhookConfigController:
    """Creates or updates the MutatingWebhookConfiguration for the MCA webhook."""

    def __init__(self, admission_api: client.AdmissionregistrationV1Api, config: WebhookConfig):
        self.admission_api = admission_api
        self.config = config

    def build(self, ca_bundle_pem: bytes) -> client.V1MutatingWebhookConfiguration:
        """Build the webhook configuration trusting ``ca_bundle_pem``."""
        name = self.config.webhook_name

        return client.V1MutatingWebhookConfiguration(
            api_version="admissionregistration.k8s.io/v1",
            kind="MutatingWebhookConfiguration",
            metadata=client.V1ObjectMeta(name=name),
            webhooks=[
                client.V1MutatingWebhook(
                    name=f"{name}.k8s.io",
                    client_config=client.AdmissionregistrationV1WebhookClientConfig(
                        service=client.AdmissionregistrationV1ServiceReference(
                            name=self.config.service_name,
                            namespace=self.config.namespace,
                            path="/mutate",
                        ),
                        ca_bundle=base64.b64encode(ca_bundle_pem).decode(),
                    ),
                    rules=[
                        client.V1RuleWithOperations(
                            operations=["CREATE"],
                            api_groups=[""],
                            api_versions=["v1"],
                            resources=["pods"],
                        )
                    ],
                    object_selector=client.V1LabelSelector(match_labels={INJECT_LABEL: "true"}),
                    admission_review_versions=["v1", "v1beta1"],
                    side_effects="None",
                    failure_policy="Fail",
                    reinvocation_policy="IfNeeded",
                )
            ],
        )

    def apply(self, ca_bundle_pem: bytes) -> client.V1MutatingWebhookConfiguration:
        """Create the webhook configuration, replacing it if it already exists."""
        name = self.config.webhook_name
        body = self.build(ca_bundle_pem)

        logger.info("Applying mutating webhook configuration...")
        try:
            result = self.admission_api.create_mutating_webhook_configuration(body)
            logger.info(f"Created mutating webhook: {name}")
            return result
        except ApiException as e:
            if e.status != 409:
                raise

        existing = self.admission_api.read_mutating_webhook_configuration(name)
        body.metadata.resource_version = existing.metadata.resource_version
        result = self.admission_api.replace_mutating_webhook_configuration(name, body)
        logger.info(f"Replaced mutating webhook: {name}")
        return result
