"""
Capabilities consumed by the kernel finder.

These are the seams to the outside world: the remote wire protocol, cache
validation, interpreter discovery and the default-controller policy. The
package ships no network implementation; hosts provide one.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from kernel_finder.events import EventEmitter
from kernel_finder.types import ConnectionInfo, KernelSpec, LiveRemoteKernelConnection, PythonEnvironment

if TYPE_CHECKING:
    from kernel_finder.controllers import KernelController


class SessionManager(ABC):
    """
    A connection to one kernel-hosting server.

    Running kernels and sessions are returned as the server reports them
    (``{"id", "name", "last_activity", "connections", ...}`` and
    ``{"id", "path", "kernel": {...}}``).
    """

    @abstractmethod
    async def get_running_kernels(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_kernel_specs(self) -> List[KernelSpec]:
        pass

    @abstractmethod
    async def get_running_sessions(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def dispose(self) -> None:
        pass


class SessionManagerFactory(ABC):
    """Creates session managers for a server connection."""

    @abstractmethod
    async def create(self, connection: ConnectionInfo) -> SessionManager:
        pass


class CachedKernelValidator(ABC):
    """Decides whether a cached live kernel may still be shown."""

    @abstractmethod
    async def is_valid(self, kernel: LiveRemoteKernelConnection) -> bool:
        pass


class InterpreterService(ABC):
    """Interpreter discovery, owned by the host environment."""

    def __init__(self):
        self.on_did_change_availability = EventEmitter("interpreters.availability")

    @property
    def is_available(self) -> bool:
        return True

    @abstractmethod
    async def get_interpreter_details(self, path: str) -> Optional[PythonEnvironment]:
        pass

    @abstractmethod
    async def get_active_interpreter(self, uri: Optional[str] = None) -> Optional[PythonEnvironment]:
        pass


class DefaultControllerService(ABC):
    """Computes the default (usually active-interpreter) controller for a document."""

    @abstractmethod
    async def compute_default_controller(
        self,
        uri: str,
        notebook_type: str,
    ) -> Optional["KernelController"]:
        pass
