"""
Pytest Configuration and Fixtures

Fakes for the capabilities the kernel finder consumes: remote session
managers, cache validators, interpreter lookup and the default-controller
policy.
"""

import asyncio
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from kernel_finder.config import PreferredConfig, RemoteConfig
from kernel_finder.finder import DiscoverySource, KernelFinder
from kernel_finder.services import (
    CachedKernelValidator,
    DefaultControllerService,
    InterpreterService,
    SessionManager,
    SessionManagerFactory,
)
from kernel_finder.store import InMemoryStore
from kernel_finder.types import (
    JupyterServer,
    KernelSpec,
    LiveKernelModel,
    LiveRemoteKernelConnection,
    LocalKernelSpecConnection,
    PythonEnvironment,
    RemoteKernelSpecConnection,
    compute_server_id,
    get_kernel_id,
)
from kernel_finder.workspace import KernelLifecycle, NotebookWorkspace

SERVER_URL = "http://remote-host:8888/?token=secret"


# =============================================================================
# Fakes
# =============================================================================

class FakeSessionManager(SessionManager):
    """Returns canned server responses."""

    def __init__(self, kernels=None, specs=None, sessions=None, error: Optional[Exception] = None):
        self.kernels = kernels or []
        self.specs = specs or []
        self.sessions = sessions or []
        self.error = error
        self.disposed = False

    async def get_running_kernels(self) -> List[Dict[str, Any]]:
        if self.error:
            raise self.error
        return list(self.kernels)

    async def get_kernel_specs(self) -> List[KernelSpec]:
        if self.error:
            raise self.error
        return list(self.specs)

    async def get_running_sessions(self) -> List[Dict[str, Any]]:
        if self.error:
            raise self.error
        return list(self.sessions)

    async def dispose(self) -> None:
        self.disposed = True


class FakeSessionManagerFactory(SessionManagerFactory):
    """Hands out session managers in order; the last one is reused."""

    def __init__(self, *managers: FakeSessionManager):
        self.managers = list(managers) or [FakeSessionManager()]
        self.created = []

    async def create(self, connection):
        index = min(len(self.created), len(self.managers) - 1)
        manager = self.managers[index]
        self.created.append(connection)
        return manager


class FakeValidator(CachedKernelValidator):
    def __init__(self, valid: bool = True):
        self.valid = valid
        self.checked = []

    async def is_valid(self, kernel) -> bool:
        self.checked.append(kernel.id)
        return self.valid


class FakeInterpreterService(InterpreterService):
    def __init__(self, active: Optional[PythonEnvironment] = None, available: bool = True):
        super().__init__()
        self.active = active
        self.available = available
        self.details: Dict[str, PythonEnvironment] = {}

    @property
    def is_available(self) -> bool:
        return self.available

    async def get_interpreter_details(self, path: str) -> Optional[PythonEnvironment]:
        return self.details.get(path)

    async def get_active_interpreter(self, uri: Optional[str] = None) -> Optional[PythonEnvironment]:
        return self.active


class FakeDefaultControllerService(DefaultControllerService):
    """Returns the registry controller of a fixed connection."""

    def __init__(self, registry=None, connection=None):
        self.registry = registry
        self.connection = connection
        self.calls = []

    async def compute_default_controller(self, uri, notebook_type):
        self.calls.append((uri, notebook_type))
        if self.registry is None or self.connection is None:
            return None
        controller = self.registry.get(self.connection, notebook_type)
        if controller is None:
            controller = self.registry.add(self.connection, [notebook_type])[0]
        return controller


class StaticSource(DiscoverySource):
    """Discovery source with a fixed candidate list."""

    kind = "static"

    def __init__(self, source_id: str, kernels=None, ready: bool = True):
        self.id = source_id
        self.display_name = f"Static {source_id}"
        super().__init__()
        self.kernels = list(kernels or [])
        self.ready_calls = 0
        self._ready = asyncio.Event()
        if ready:
            self._ready.set()

    def set_ready(self) -> None:
        self._ready.set()

    async def wait_until_ready(self) -> None:
        self.ready_calls += 1
        await self._ready.wait()

    def list_candidates_for(self, document_scope):
        return list(self.kernels)


# =============================================================================
# Builders
# =============================================================================

def make_spec(name="python3", language="python", display_name=None, argv=None) -> KernelSpec:
    return KernelSpec(
        name=name,
        display_name=display_name or name,
        language=language,
        argv=argv or [f"/usr/bin/{name}", "-m", "ipykernel_launcher", "-f", "{connection_file}"],
    )


def make_local(name="python3", language="python", display_name=None, interpreter=None) -> LocalKernelSpecConnection:
    spec = make_spec(name, language, display_name)
    return LocalKernelSpecConnection(id=get_kernel_id(spec, interpreter), kernel_spec=spec, interpreter=interpreter)


def make_remote_spec(name="python3", language="python", server_url=SERVER_URL) -> RemoteKernelSpecConnection:
    spec = make_spec(name, language)
    server_id = compute_server_id(server_url)
    return RemoteKernelSpecConnection(
        id=get_kernel_id(spec, None, server_id),
        server_id=server_id,
        base_url=server_url,
        kernel_spec=spec,
    )


def make_live(kernel_id="k1", name="python3", language="python", path="work/notebook.ipynb",
              server_url=SERVER_URL) -> LiveRemoteKernelConnection:
    model = LiveKernelModel(
        id=kernel_id,
        name=name,
        display_name=name,
        language=language,
        session={"id": f"s-{kernel_id}", "path": path, "kernel": {"id": kernel_id, "name": name}},
    )
    return LiveRemoteKernelConnection(
        id=kernel_id,
        server_id=compute_server_id(server_url),
        base_url=server_url,
        kernel_model=model,
    )


def make_session(kernel_id="k1", name="python3", path="work/notebook.ipynb") -> Dict[str, Any]:
    return {"id": f"s-{kernel_id}", "path": path, "kernel": {"id": kernel_id, "name": name}}


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def server() -> JupyterServer:
    return JupyterServer(server_id=compute_server_id(SERVER_URL), uri=SERVER_URL, display_name="Lab")


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def kernel_finder() -> KernelFinder:
    return KernelFinder()


@pytest.fixture
def workspace() -> NotebookWorkspace:
    return NotebookWorkspace()


@pytest.fixture
def lifecycle() -> KernelLifecycle:
    return KernelLifecycle()


@pytest.fixture
def remote_config() -> RemoteConfig:
    return RemoteConfig(dispose_refresh_delay=0.01)


@pytest.fixture
def preferred_config() -> PreferredConfig:
    return PreferredConfig(open_debounce=0.01)
