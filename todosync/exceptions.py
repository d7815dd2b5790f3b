class AuthenticationError(Exception):
    """Raised when no user is signed in or the identity service rejects the credentials."""


class IntegrationError(Exception):
    """Raised when a Firebase call fails."""


class RateLimitError(Exception):
    """Raised when a Firebase rate limit is hit."""
