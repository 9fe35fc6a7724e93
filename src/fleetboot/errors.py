# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/errors.py
class FleetbootError(RuntimeError):
    """Base class for node orchestration and bootstrap failures."""

    retryable = False

    def annotate(self, context: str) -> "FleetbootError":
        """Same error class with `context: ` prefixed to the message."""
        return type(self)(f"{context}: {self}")


class UnsupportedPlatformError(FleetbootError):
    """Raised when the local platform is not linux/amd64."""


class AlreadyExistsError(FleetbootError):
    """Raised when a destination exists and force was not requested."""


class NotFoundError(FleetbootError):
    """Raised when a required binary or config file is missing."""


class AuthenticationFailedError(FleetbootError):
    """Raised when no SSH auth method is usable or the server rejects all of them."""


class ConnectionFailedError(FleetbootError):
    """Raised when dialing a node (directly or through a jumpbox) fails."""

    retryable = True


class CommandFailedError(FleetbootError):
    """Raised when a remote or local command exits non-zero or its transport breaks."""

    def __init__(self, message: str, *, exit_status: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.exit_status = exit_status
        self.stderr = stderr

    def annotate(self, context: str) -> "CommandFailedError":
        return type(self)(f"{context}: {self}", exit_status=self.exit_status, stderr=self.stderr)


class ConfigInvalidError(FleetbootError):
    """Raised when a YAML document cannot be parsed or validated."""


class NoSuitableAddressError(FleetbootError):
    """Raised when no non-loopback IPv4 address exists on this machine."""


class OperationTimeoutError(FleetbootError, TimeoutError):
    """Raised when a dial or command exceeds its deadline."""

    retryable = True
