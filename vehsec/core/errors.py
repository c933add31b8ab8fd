"""Domain-specific errors for vehsec."""


class VehsecError(Exception):
    """Base error for vehsec."""


class ConfigValidationError(VehsecError):
    """Raised when a PID table or settings file does not conform to schema or semantics."""


class ConfigLoadError(VehsecError):
    """Raised when reading configuration sources fails."""


class UnknownPidError(VehsecError):
    """Raised when a PID name or request code is not in the PID table."""


class ParseError(VehsecError):
    """Raised when an adapter response has no recognizable header."""


class InsufficientSamplesError(VehsecError):
    """Raised when an analysis precondition on evidence size is not met."""


class UnsupportedError(VehsecError):
    """Raised when a device/algorithm combination has no handler."""


class CommandNotAllowedError(VehsecError):
    """Raised when an external tool command is outside the allow-list."""


class TransportError(VehsecError):
    """Base transport error."""


class NotConnectedError(TransportError):
    """Raised when a command is sent without an open connection."""


class DeviceUnavailableError(TransportError):
    """Raised when the adapter cannot be opened or initialised."""


class TransportSendError(TransportError):
    """Raised when writing to or reading from the channel fails."""


class TransportTimeoutError(TransportError):
    """Raised when no complete response arrives before the deadline."""
