"""Custom exception hierarchy for Coursegate."""


class CoursegateError(Exception):
    """Base error."""
    def __init__(self, message: str, code: str = "COURSEGATE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class AuthError(CoursegateError):
    """Authentication / authorization failures."""
    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, code="AUTH_ERROR")


class SessionError(CoursegateError):
    """Session record failures."""
    def __init__(self, message: str = "Session error"):
        super().__init__(message, code="SESSION_ERROR")


class CredentialError(CoursegateError):
    """Content credential could not be obtained."""
    def __init__(self, message: str = "Credential error", code: str = "CREDENTIAL_ERROR"):
        super().__init__(message, code=code)


class CredentialDeniedError(CredentialError):
    """Authority refused to issue a credential. Terminal — never retried automatically."""
    def __init__(self, message: str = "Access denied", status_code: int = 403):
        self.status_code = status_code
        super().__init__(message, code="CREDENTIAL_DENIED")


class CredentialUnavailableError(CredentialError):
    """Authority unreachable or failing. Transient."""
    def __init__(self, message: str = "Credential authority unavailable"):
        super().__init__(message, code="CREDENTIAL_UNAVAILABLE")


class ContentNotFoundError(CoursegateError):
    """Content item (or its media URL) does not exist."""
    def __init__(self, message: str = "Content not found"):
        super().__init__(message, code="CONTENT_NOT_FOUND")


class StorageUrlError(CoursegateError):
    """Media URL is not a recognizable storage object URL."""
    def __init__(self, message: str = "Invalid storage URL format"):
        super().__init__(message, code="STORAGE_URL_ERROR")


class ConfigurationError(CoursegateError):
    """Server misconfiguration detected at request time. Maps to 500."""
    def __init__(self, message: str = "Server misconfigured"):
        super().__init__(message, code="CONFIG_ERROR")
