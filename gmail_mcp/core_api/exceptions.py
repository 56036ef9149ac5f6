# gmail_mcp/core_api/exceptions.py
class GmailMcpError(Exception):
    """Base exception for gmail-mcp application errors."""

    def __init__(self, message, original_exception=None):
        super().__init__(message)
        self.message = message
        self.original_exception = original_exception


class GmailApiError(GmailMcpError):
    """Indicates an error interacting with the Gmail API."""

    pass


class RuleStorageError(GmailMcpError):
    """Indicates an error during rule storage operations."""

    pass


class InvalidParameterError(GmailMcpError):
    """Indicates a missing or malformed argument. Never worth retrying."""

    pass


class InvalidRequestError(GmailMcpError):
    """The request is well-formed but invalid given the current state."""

    pass


class RuleNotFoundError(InvalidRequestError):
    """Indicates a rule index was out of range."""

    pass


class LabelNotFoundError(InvalidRequestError):
    pass


class MessageNotFoundError(InvalidRequestError):
    pass


class NotAuthorizedError(InvalidRequestError):
    """No usable OAuth token is stored yet."""

    pass


class OAuthFlowPendingError(InvalidRequestError):
    pass
