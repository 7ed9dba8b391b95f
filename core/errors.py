from typing import Iterable, Optional
from pathlib import Path


class AppError(Exception):
    """Base class for every failure the core reports to a caller."""


class StorageError(AppError):
    """Disk read/write/permission failure."""


class NotFoundError(AppError):
    """Missing binary, model or job id.

    When raised by the resolver, ``probed`` lists every location that was tried.
    """

    def __init__(self, message: str, probed: Optional[Iterable[Path]] = None):
        self.probed = [Path(p) for p in (probed or [])]
        if self.probed:
            listing = "\n".join(f"  - {p}" for p in self.probed)
            message = f"{message}\nProbed:\n{listing}"
        super().__init__(message)


class NetworkError(AppError):
    """Connect failure, timeout, non-2xx status or unusable response body."""


class FormatError(AppError):
    """Malformed JSON or archive, or a required archive entry is missing."""


class LicenseViolation(AppError):
    """A binary was built with a configuration we are not allowed to ship."""


class ConcurrencyConflict(AppError):
    """A shared structure could not be locked, or the worker has shut down."""


class ProcessFailed(AppError):
    """An external tool could not be started or exited with a non-zero status."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        self.returncode = returncode
        super().__init__(message)
