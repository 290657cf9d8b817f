"""Fatal error types. Anything raised from here ends the process with exit 1."""


class LogpipeError(Exception):
    """Base class for unrecoverable logpipe failures."""


class ConfigError(LogpipeError):
    """Missing credential, malformed endpoint, or otherwise unusable settings."""


class AuthenticationError(LogpipeError):
    """The endpoint rejected the credential; every later send would fail too."""

    def __init__(self, status_code: int):
        super().__init__(f"bad license key (got {status_code})")
        self.status_code = status_code
