"""Custom exceptions for ERP Data Chat."""


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


class MessageFormatError(Exception):
    """Raised when an inbound chat transcript is malformed."""
    pass


class PromptTemplateError(Exception):
    """Raised when a prompt template fails to render."""
    pass


# ── Model provider ──────────────────────────────────────────────────


class ProviderError(Exception):
    """Base class for failures of the completion provider itself."""
    pass


class ProviderConfigError(ProviderError):
    """Raised when the provider cannot be called (e.g. no API key)."""
    pass


class ProviderConnectionError(ProviderError):
    """Raised when unable to reach the completion provider."""
    pass


class ProviderResponseError(ProviderError):
    """Raised when the provider answers with a non-success status."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


# ── Tools ───────────────────────────────────────────────────────────


class ToolError(Exception):
    """
    Failure raised by a tool handler.

    The dispatcher turns it into text for the model, labelled with `category`.
    `hint` is an optional follow-up line that helps the model self-correct.
    """

    category = "remote service"

    def __init__(self, message: str, hint: str = ""):
        super().__init__(message)
        self.hint = hint


class ToolConfigurationError(ToolError):
    """The tool's backing service is misconfigured or rejected our credentials."""
    category = "configuration"


class ToolConnectivityError(ToolError):
    """The tool's backing service could not be reached in time."""
    category = "connectivity"


class RemoteServiceError(ToolError):
    """The tool's backing service failed or returned an unusable answer."""
    category = "remote service"


class ToolValidationError(ToolError):
    """The request was rejected as syntactically or semantically invalid."""
    category = "syntax/validation"


class ToolArgumentError(ToolValidationError):
    """The model sent arguments that could not be parsed."""
    pass


class ToolNotFoundError(Exception):
    """Raised when a requested tool does not exist."""
    pass
