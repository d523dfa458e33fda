class ScrubError(Exception):
    """Base class for everything piiscrub raises on purpose."""
    exit_code = 1


class ConfigError(ScrubError):
    """Malformed command line or environment settings. Raised before any SQL runs."""
    exit_code = 2


class GuardRejected(ScrubError):
    """The run was refused: live target without override, or not confirmed."""
    exit_code = 3


class StoreError(ScrubError):
    """A statement failed. The message is the database driver's, unmodified."""
    exit_code = 1
