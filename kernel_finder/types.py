"""
Data model for kernel discovery.

A *candidate connection* is one resolvable way to execute code for a
notebook. Three variants exist:

- LocalKernelSpecConnection: start a kernel spec installed on this machine
- RemoteKernelSpecConnection: start a kernel spec on a remote server
- LiveRemoteKernelConnection: attach to a kernel already running on a server

Candidates serialize to plain dicts tagged with ``kind`` so they can be
persisted in a :class:`kernel_finder.store.Store`.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse

PYTHON_LANGUAGE = "python"

# Notebook types handled by the preferred-kernel logic
JUPYTER_NOTEBOOK_VIEW = "jupyter-notebook"
INTERACTIVE_WINDOW_VIEW = "interactive"
NOTEBOOK_TYPES = (JUPYTER_NOTEBOOK_VIEW, INTERACTIVE_WINDOW_VIEW)

INTERACTIVE_URI_SCHEME = "vscode-interactive"


class ConnectionKind(str, Enum):
    """Tag of a candidate connection."""
    LOCAL_SPEC = "local_spec"
    REMOTE_SPEC = "remote_spec"
    LIVE_REMOTE = "live_remote"


class Affinity(str, Enum):
    """How strongly the UI should recommend a controller for a document."""
    DEFAULT = "default"
    PREFERRED = "preferred"
    HIDDEN = "hidden"


@dataclass
class PythonEnvironment:
    """An interpreter reference as returned by the interpreter-lookup capability."""
    id: str
    path: str
    display_name: str = ""
    version: str = ""
    sys_prefix: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "display_name": self.display_name,
            "version": self.version,
            "sys_prefix": self.sys_prefix,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PythonEnvironment":
        return cls(
            id=data.get("id") or data.get("path", ""),
            path=data.get("path", ""),
            display_name=data.get("display_name", ""),
            version=data.get("version", ""),
            sys_prefix=data.get("sys_prefix", ""),
        )


@dataclass
class KernelSpec:
    """A kernel spec as found in ``kernel.json`` or served by ``/api/kernelspecs``."""
    name: str
    display_name: str = ""
    language: str = ""
    argv: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    resource_dir: str = ""

    @property
    def executable(self) -> Optional[str]:
        return self.argv[0] if self.argv else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "language": self.language,
            "argv": list(self.argv),
            "metadata": dict(self.metadata),
            "resource_dir": self.resource_dir,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KernelSpec":
        """Accepts both the flat form and the server's ``{"name", "spec": {...}}`` form."""
        body = data.get("spec") if isinstance(data.get("spec"), dict) else data
        return cls(
            name=data.get("name") or body.get("name", ""),
            display_name=body.get("display_name", ""),
            language=body.get("language", ""),
            argv=list(body.get("argv") or []),
            metadata=dict(body.get("metadata") or {}),
            resource_dir=data.get("resource_dir") or data.get("resources_dir", "") or "",
        )


@dataclass
class LiveKernelModel:
    """A running kernel merged with its session and the spec it was started from."""
    id: str
    name: str
    display_name: str = ""
    language: str = ""
    argv: List[str] = field(default_factory=list)
    execution_state: str = ""
    last_activity_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    number_of_connections: int = 0
    session: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "language": self.language,
            "argv": list(self.argv),
            "execution_state": self.execution_state,
            "last_activity_time": self.last_activity_time.isoformat(),
            "number_of_connections": self.number_of_connections,
            "session": dict(self.session),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LiveKernelModel":
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            display_name=data.get("display_name", ""),
            language=data.get("language", ""),
            argv=list(data.get("argv") or []),
            execution_state=data.get("execution_state", ""),
            last_activity_time=parse_timestamp(data.get("last_activity_time")),
            number_of_connections=int(data.get("number_of_connections") or 0),
            session=dict(data.get("session") or {}),
        )


@dataclass(frozen=True)
class KernelFinderInfo:
    """Identity of the discovery source that produced a candidate."""
    id: str
    display_name: str


class KernelConnection:
    """Behaviour shared by every candidate connection variant."""

    kind: ConnectionKind
    id: str
    finder_info: Optional[KernelFinderInfo]

    @property
    def language(self) -> str:
        raise NotImplementedError

    @property
    def display_name(self) -> str:
        raise NotImplementedError

    @property
    def interpreter(self) -> Optional[PythonEnvironment]:
        return None

    @property
    def is_remote(self) -> bool:
        return self.kind in (ConnectionKind.REMOTE_SPEC, ConnectionKind.LIVE_REMOTE)

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass
class LocalKernelSpecConnection(KernelConnection):
    """Start a locally installed kernel spec."""
    id: str
    kernel_spec: KernelSpec
    interpreter: Optional[PythonEnvironment] = None
    finder_info: Optional[KernelFinderInfo] = field(default=None, compare=False, repr=False)

    kind = ConnectionKind.LOCAL_SPEC

    @property
    def language(self) -> str:
        return (self.kernel_spec.language or "").lower()

    @property
    def display_name(self) -> str:
        return self.kernel_spec.display_name or self.kernel_spec.name

    @property
    def launch_args(self) -> List[str]:
        return list(self.kernel_spec.argv)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "id": self.id,
            "kernel_spec": self.kernel_spec.to_dict(),
            "interpreter": self.interpreter.to_dict() if self.interpreter else None,
        }


@dataclass
class RemoteKernelSpecConnection(KernelConnection):
    """Start a kernel spec on a remote server."""
    id: str
    server_id: str
    base_url: str
    kernel_spec: KernelSpec
    interpreter: Optional[PythonEnvironment] = None
    finder_info: Optional[KernelFinderInfo] = field(default=None, compare=False, repr=False)

    kind = ConnectionKind.REMOTE_SPEC

    @property
    def language(self) -> str:
        return (self.kernel_spec.language or "").lower()

    @property
    def display_name(self) -> str:
        return self.kernel_spec.display_name or self.kernel_spec.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "id": self.id,
            "server_id": self.server_id,
            "base_url": self.base_url,
            "kernel_spec": self.kernel_spec.to_dict(),
            "interpreter": self.interpreter.to_dict() if self.interpreter else None,
        }


@dataclass
class LiveRemoteKernelConnection(KernelConnection):
    """Attach to a kernel that is already running on a remote server."""
    id: str
    server_id: str
    base_url: str
    kernel_model: LiveKernelModel
    finder_info: Optional[KernelFinderInfo] = field(default=None, compare=False, repr=False)

    kind = ConnectionKind.LIVE_REMOTE

    @property
    def language(self) -> str:
        return (self.kernel_model.language or "").lower()

    @property
    def display_name(self) -> str:
        return self.kernel_model.display_name or self.kernel_model.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "id": self.id,
            "server_id": self.server_id,
            "base_url": self.base_url,
            "kernel_model": self.kernel_model.to_dict(),
        }


RemoteKernelConnection = Union[RemoteKernelSpecConnection, LiveRemoteKernelConnection]


@dataclass
class ConnectionInfo:
    """Where a remote server can be reached."""
    url: str
    base_url: str = ""
    display_name: str = ""
    token: str = ""

    def __post_init__(self):
        if not self.base_url:
            self.base_url = self.url


@dataclass
class JupyterServer:
    """A remote server registered by the user."""
    server_id: str
    uri: str
    display_name: str = ""


@dataclass
class NotebookDocument:
    """The part of a host document the kernel finder needs."""
    uri: str
    notebook_type: str = JUPYTER_NOTEBOOK_VIEW
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def resource_type(self) -> str:
        return get_resource_type(self.uri, self.notebook_type)


# =============================================================================
# Helpers
# =============================================================================

def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO timestamp; missing or invalid values mean "now"."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.now(timezone.utc)


def compute_server_id(url: str) -> str:
    """Stable server id derived from the connection URL."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


def get_interpreter_hash(interpreter: Optional[PythonEnvironment]) -> Optional[str]:
    """Hash stored in notebook metadata to pin a notebook to an interpreter."""
    if interpreter is None or not interpreter.path:
        return None
    return hashlib.sha256(interpreter.path.encode("utf-8")).hexdigest()


def get_kernel_id(
    spec: KernelSpec,
    interpreter: Optional[PythonEnvironment] = None,
    server_id: Optional[str] = None,
) -> str:
    """
    Deterministic identifier for a spec-based candidate.

    The same spec on two servers, or bound to two interpreters, gets two ids.
    """
    content = json.dumps({
        "server": server_id or "",
        "name": spec.name,
        "argv": spec.argv,
        "interpreter": interpreter.path if interpreter else "",
    }, sort_keys=True)
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]
    prefix = ".remote" if server_id else ".local"
    return f"{prefix}.{spec.name}.{digest}"


def get_language_in_notebook_metadata(metadata: Optional[Dict[str, Any]]) -> Optional[str]:
    """Language declared by a notebook, lower-cased, or None."""
    if not metadata:
        return None
    language_info = metadata.get("language_info") or {}
    kernelspec = metadata.get("kernelspec") or {}
    language = language_info.get("name") or kernelspec.get("language")
    return language.lower() if isinstance(language, str) and language else None


def is_python_notebook(metadata: Optional[Dict[str, Any]]) -> bool:
    language = get_language_in_notebook_metadata(metadata)
    if language:
        return language == PYTHON_LANGUAGE
    kernelspec = (metadata or {}).get("kernelspec") or {}
    name = (kernelspec.get("name") or "").lower()
    return name.startswith(PYTHON_LANGUAGE)


def get_resource_type(uri: str, notebook_type: str = JUPYTER_NOTEBOOK_VIEW) -> str:
    """``interactive`` for interactive windows, ``notebook`` otherwise."""
    if notebook_type == INTERACTIVE_WINDOW_VIEW:
        return "interactive"
    parsed = urlparse(uri)
    if parsed.scheme == INTERACTIVE_URI_SCHEME or parsed.path.endswith(".interactive"):
        return "interactive"
    return "notebook"


def is_remote_connection(connection: Optional[KernelConnection]) -> bool:
    return connection is not None and connection.is_remote


def is_localhost(url: str) -> bool:
    hostname = (urlparse(url).hostname or "").lower()
    return hostname in ("localhost", "127.0.0.1")


def serialize_connection(connection: KernelConnection) -> Dict[str, Any]:
    return connection.to_dict()


def deserialize_connection(data: Dict[str, Any]) -> KernelConnection:
    """Rebuild a candidate from :func:`serialize_connection` output."""
    kind = ConnectionKind(data["kind"])
    interpreter = data.get("interpreter")
    if kind == ConnectionKind.LOCAL_SPEC:
        return LocalKernelSpecConnection(
            id=data["id"],
            kernel_spec=KernelSpec.from_dict(data["kernel_spec"]),
            interpreter=PythonEnvironment.from_dict(interpreter) if interpreter else None,
        )
    if kind == ConnectionKind.REMOTE_SPEC:
        return RemoteKernelSpecConnection(
            id=data["id"],
            server_id=data["server_id"],
            base_url=data["base_url"],
            kernel_spec=KernelSpec.from_dict(data["kernel_spec"]),
            interpreter=PythonEnvironment.from_dict(interpreter) if interpreter else None,
        )
    return LiveRemoteKernelConnection(
        id=data["id"],
        server_id=data["server_id"],
        base_url=data["base_url"],
        kernel_model=LiveKernelModel.from_dict(data["kernel_model"]),
    )
