class AutoUpdateException(Exception):
    """Base exception for all autoupdate errors."""
    pass

class ConfigurationException(AutoUpdateException):
    """Raised when the configuration file is missing, malformed or invalid."""
    pass

class ProviderInitializationException(AutoUpdateException):
    """Raised when a provider cannot be instantiated from its configuration."""
    pass

class UnknownProviderException(ProviderInitializationException):
    """Raised when no provider factory is registered under the requested type."""
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"unknown provider type: {name!r}")

class ProviderException(AutoUpdateException):
    """Raised when a call against a Git hosting provider fails."""
    pass

class ResourceNotFoundException(ProviderException):
    """Raised when the provider answers that a resource does not exist."""
    pass

class RateLimitExceededException(ProviderException):
    """Raised when the provider's API rate limit is hit."""
    def __init__(self, reset_at: str, message: str = "API rate limit exceeded."):
        self.reset_at = reset_at
        super().__init__(f"{message} Resets at: {reset_at}")

class DiscoveryException(AutoUpdateException):
    """Raised when repositories of an organization cannot be discovered."""
    def __init__(self, organization: str, cause: Exception):
        self.organization = organization
        self.cause = cause
        super().__init__(f"failed to discover repositories in {organization!r}: {cause}")

class UpdaterException(AutoUpdateException):
    """Raised when an updater fails to process a repository."""
    pass
