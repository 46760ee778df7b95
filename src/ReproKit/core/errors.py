"""Error taxonomy shared by the repro pipeline and the statistics scanner."""


class ReproError(Exception):
    """Base class for all ReproKit failures."""


class ConfigurationError(ReproError, ValueError):
    """Raised before any filesystem mutation when a run cannot start."""


class ConflictError(ReproError):
    """Raised when the target directory is non-empty and overwrite was declined."""

    def __init__(self, target: str):
        super().__init__(
            f"Target directory already exists and is not empty: {target}"
        )
        self.target = target


class SourceMissingError(ReproError, FileNotFoundError):
    """Raised when a manifest entry does not exist at copy time."""

    def __init__(self, path: str):
        super().__init__(f"Source file listed in manifest does not exist: {path}")
        self.path = path

    def __str__(self) -> str:
        return self.args[0]


class DecodeError(ReproError, IOError):
    """Raised when a texture cannot be decoded or imported."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to decode texture '{path}': {reason}")
        self.path = path
        self.reason = reason

    def __str__(self) -> str:
        return self.args[0]


class ReportParseError(ReproError, ValueError):
    """Raised when a persisted report or settings document is malformed."""


class ReproCancelledError(ReproError):
    """Raised when a cooperative cancellation request is observed."""
