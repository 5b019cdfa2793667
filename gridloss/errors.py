"""Exceptions raised by the grid losses service."""


class GridLossError(Exception):
    """Base class for all service errors."""
    pass


class ConfigError(GridLossError):
    """Raised when the configuration file or environment overlay is invalid."""
    pass


class CacheError(GridLossError):
    """Raised when the local profile cache cannot be read or written."""

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path


class ProfileClientError(GridLossError):
    """Raised by the profile API client on logon or retrieval failure."""

    def __init__(self, message: str, url: str = "", status: int = None):
        super().__init__(message)
        self.url = url
        self.status = status


class ProfileParseError(GridLossError):
    """Raised when a topology or equipment document cannot be decoded."""
    pass


class ProfileLoadError(GridLossError):
    """Raised when a profile cannot be obtained from any source."""
    pass


class TopologyError(GridLossError):
    """Raised when the topology graph rejects a construction or mutation."""
    pass


class BusError(GridLossError):
    """Raised on message bus setup or transport failure."""
    pass


class DiagnosticsError(GridLossError):
    """Raised when the diagnostics HTTP server cannot be created."""
    pass
