"""Exception hierarchy for Solaris."""

from __future__ import annotations


class SolarisError(Exception):
    """Base exception for Solaris errors."""


class ConfigurationError(SolarisError):
    """Raised when configuration or a request references something that isn't configured."""


class UnknownRelayError(ConfigurationError):
    """Raised when a relay id outside the configured set is referenced."""

    def __init__(self, relay_id: object) -> None:
        self.relay_id = relay_id
        super().__init__(f"Unknown relay id: {relay_id!r}")


class MalformedInputError(SolarisError):
    """Raised by parsers for records that cannot be interpreted."""


class RemoteStoreError(SolarisError):
    """Transport-level failure talking to the remote store. Retryable."""


class RemoteWriteError(RemoteStoreError):
    """One or more relay writes failed and were rolled back locally."""

    def __init__(self, failures: dict[int, str]) -> None:
        self.failures = dict(failures)
        ids = ", ".join(str(i) for i in sorted(self.failures))
        super().__init__(f"Remote write failed for relay(s) {ids}")

    @property
    def relay_ids(self) -> list[int]:
        return sorted(self.failures)


class ForecastUnavailableError(SolarisError):
    """The forecast collaborator could not supply a forecast."""
