"""Installer exceptions."""

from typing import List, Optional


class InstallerError(RuntimeError):
    """Base class for failures reported to the operator."""


class PreconditionError(InstallerError):
    """A check failed before any change was made to the host."""


class UnsupportedPlatformError(InstallerError):
    pass


class DownloadError(InstallerError):
    pass


class StepFailedError(InstallerError):
    """A lifecycle step failed; earlier steps are left in place."""

    def __init__(self, step: str, cause: BaseException, completed: Optional[List[str]] = None):
        self.step = step
        self.cause = cause
        self.completed = list(completed or [])
        super().__init__(f"{step} failed: {cause}")
