class PipelineError(RuntimeError):
    """Base type for failures that stop a whole pipeline run."""


class ConfigurationError(PipelineError):
    """Missing or malformed credentials/settings. Raised before any network work."""


class OriginFetchError(PipelineError):
    """The listing source was unreachable or answered with a non-success status."""
