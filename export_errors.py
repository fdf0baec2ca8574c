# ---------- Error taxonomy ----------
# Every failure raised by the export pipeline derives from SchemaExportError so the CLI
# boundary can report it once and exit non-zero. Nothing here is retried.

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class SchemaExportError(Exception):
    pass


class ConfigResolutionError(SchemaExportError):
    # Static data config file exists but could not be read or parsed.
    def __init__(self, path: Union[str, Path], reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"invalid static data config {self.path}: {reason}")


class ProviderConnectionError(SchemaExportError):
    pass


class FetchError(SchemaExportError):
    pass


class FilesystemError(SchemaExportError):
    def __init__(self, path: Union[str, Path], cause: Optional[BaseException] = None):
        self.path = Path(path)
        self.cause = cause
        message = f"filesystem error at {self.path}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class CommandError(SchemaExportError):
    """Wraps an export failure with the subcommand that produced it."""

    def __init__(self, command: str, cause: BaseException):
        self.command = command
        self.cause = cause
        super().__init__(f"{command}: {cause}")
