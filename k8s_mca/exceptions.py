"""Errors raised by sidecar injection and the servers around it."""


class MCAError(Exception):
    """Base class for all k8s-mca errors."""


class MalformedInputError(MCAError, ValueError):
    """The pod cannot be reconciled into a structure with a single, unambiguous sidecar."""


class ConfigurationMissingError(MCAError):
    """A required configuration value is empty at call time."""


class PodDecodeError(MCAError):
    """The manifest could not be parsed into a pod."""


class PodEncodeError(MCAError):
    """The mutated pod could not be serialized."""
