"""Project error hierarchy."""


class PxGuardError(Exception):
    """Base error."""


class ConfigError(PxGuardError):
    """Raised when enforcer configuration is missing or invalid."""


class CookieDecodeError(PxGuardError):
    """Raised when a risk cookie cannot be decoded or authenticated."""

    def __init__(self, message: str, reason: str = "cookie_decryption_failed") -> None:
        super().__init__(message)
        self.reason = reason


class RemoteCallError(PxGuardError):
    """Raised when the risk API call fails (network, timeout, non-2xx, bad payload)."""


class RelayUpstreamError(PxGuardError):
    """Raised when a first-party upstream request fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TelemetryFlushError(PxGuardError):
    """Raised when an activities batch cannot be delivered."""
