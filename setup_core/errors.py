class SetupError(Exception):
    """Base class for failures that end a setup run."""


class PreflightFailure(SetupError):
    """A prerequisite is missing or an input parameter is invalid."""


class DiscoveryFailure(SetupError):
    """No compose file or no n8n container could be found."""


class MalformedDocument(SetupError):
    """Block boundaries in the compose document cannot be classified."""


class ValidationFailure(SetupError):
    """The merged compose file did not pass validation."""
