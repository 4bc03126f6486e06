"""
Exception types raised by the Inspector harness.
"""


class KibitzError(Exception):
    """Base class for harness errors"""


class ConfigError(KibitzError):
    """Server configuration file is missing or malformed"""


class BrowserNotInitializedError(KibitzError):
    """A browser operation was attempted before initialize()"""

    def __init__(self, message: str = "Browser not initialized. Call initialize() first."):
        super().__init__(message)


class InspectorStartError(KibitzError):
    """The Inspector process could not be spawned or exited before reporting a URL"""


class InspectorTimeoutError(InspectorStartError):
    """The Inspector never printed its URL within the startup bound"""


class ConditionTimeoutError(KibitzError):
    """A polled condition never became true within its attempt budget"""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class ServerConnectionError(ConditionTimeoutError):
    """The Inspector UI never showed evidence of a connected session"""

    def __init__(self, server_path: str, attempts: int = 0, interval: float = 0.0):
        waited = attempts * interval
        super().__init__(
            f"Server connection failed - UI elements not found after "
            f"{attempts} attempts ({waited:g}s) for {server_path}",
            attempts=attempts,
        )
        self.server_path = server_path
