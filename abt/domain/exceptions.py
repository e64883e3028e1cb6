class AbtError(Exception):
    """Base class for fatal errors that abort a run before any work starts."""


class ConfigError(AbtError):
    pass


class DirectoryError(AbtError):
    """Source/destination directory is missing, identical, or not writable."""


class EncoderUnavailableError(AbtError):
    pass


class InsufficientSpaceError(AbtError):
    def __init__(self, required_bytes: int, available_bytes: int):
        self.required_bytes = required_bytes
        self.available_bytes = available_bytes
        gb = 1024 ** 3
        super().__init__(
            f"Insufficient disk space. Need ~{required_bytes / gb:.1f} GB, "
            f"only {available_bytes / gb:.1f} GB available"
        )
