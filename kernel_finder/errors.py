"""
Exceptions raised by the kernel finder.

Cancellation is not part of this taxonomy: it is signalled through
cancellation tokens and handled as a normal early return.
"""

from typing import Optional


class KernelFinderError(Exception):
    """Base class for kernel finder errors."""
    pass


class ConfigError(KernelFinderError):
    """Raised when configuration values are invalid."""
    pass


class TransientFetchFailure(KernelFinderError):
    """Raised when listing kernels from a live server fails.

    Callers recover by falling back to the validated cache or to an
    empty candidate list.
    """

    def __init__(self, server_id: str, cause: Optional[BaseException] = None):
        self.server_id = server_id
        self.cause = cause
        message = f"Failed to fetch kernels from server {server_id}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class ResolutionFailure(KernelFinderError):
    """Raised when an interpreter or identity lookup fails.

    Never fatal: the surrounding computation treats the hint as absent.
    """

    def __init__(self, target: str, cause: Optional[BaseException] = None):
        self.target = target
        self.cause = cause
        message = f"Failed to resolve {target}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)

