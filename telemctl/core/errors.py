"""Domain-specific errors for telemctl."""


class TelemctlError(Exception):
    """Base error for telemctl."""


class ProjectValidationError(TelemctlError):
    """Raised when a project file does not conform to schema or semantics."""


class ProjectLoadError(TelemctlError):
    """Raised when reading a project file fails."""


class SettingsError(TelemctlError):
    """Raised when the user settings file is unreadable or invalid."""


class SessionError(TelemctlError):
    """Raised when a session operation conflicts with the active source."""


class TransportError(TelemctlError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when a link cannot be opened or is lost."""


class TransportPermissionError(TransportConnectError):
    """Raised when the OS denies access to the device or socket."""


class TransportTimeoutError(TransportError):
    """Raised when opening a link times out."""


class TransportSendError(TransportError):
    """Raised when writing to an open link fails."""


class TransportUnavailableError(TransportError):
    """Raised when a backend library, adapter or platform feature is missing."""


class ScriptError(TelemctlError):
    """Base error for frame parser scripts."""


class ScriptValidationError(ScriptError):
    """Raised when a parser script is rejected at load time."""


class FrameError(TelemctlError):
    """Base for per-frame errors. The frame is dropped, the session continues."""


class FramingError(FrameError):
    """Raised when the frame buffer overflows without finding a delimiter."""


class DecodeError(FrameError):
    """Raised when a frame payload is not valid for the decoder method."""


class ScriptRuntimeError(FrameError, ScriptError):
    """Raised when the parser script fails on a single frame."""


class MappingError(FrameError):
    """Raised when a field list cannot be mapped onto the project datasets."""


class ReplayError(TelemctlError):
    """Raised when a CSV file cannot be replayed."""


class InsufficientDataError(ReplayError):
    """Raised when a CSV file has fewer than two data rows."""


class ExportError(TelemctlError):
    """Raised when an export sink cannot write its output."""
