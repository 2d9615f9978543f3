"""
Kernel sources: the groups a user picks kernels from.

A source is a coarse category ("Local", "Remote") listing candidate
connections. The local source disappears in web mode, where nothing can be
launched on this machine.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from kernel_finder.cancellation import CancellationToken, is_cancelled
from kernel_finder.config import SourcesConfig
from kernel_finder.events import Disposable, EventEmitter, dispose_all
from kernel_finder.finder import KernelFinder
from kernel_finder.local_finder import LocalKernelFinder
from kernel_finder.types import NOTEBOOK_TYPES, KernelConnection, NotebookDocument
from kernel_finder.workspace import NotebookWorkspace

logger = logging.getLogger(__name__)

LOCAL_KERNEL_SOURCE_ID = "LOCALKERNELSOURCE"
REMOTE_KERNEL_SOURCE_ID = "REMOTEKERNELSOURCE"


class KernelSource(ABC):
    """A named group of candidate connections."""

    id: str = "base"
    display_name: str = "Base"
    type: str = "base"

    @abstractmethod
    async def list_kernels(
        self,
        document_scope: Any = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[KernelConnection]:
        pass

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "display_name": self.display_name, "type": self.type}

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id}>"


class LocalKernelSource(KernelSource):
    """Kernel specs installed on this machine."""

    id = LOCAL_KERNEL_SOURCE_ID
    display_name = "Local"
    type = "local"

    def __init__(self, local_finder: Optional[LocalKernelFinder] = None):
        self.local_finder = local_finder

    async def list_kernels(
        self,
        document_scope: Any = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[KernelConnection]:
        if self.local_finder is None:
            return []
        await self.local_finder.wait_until_ready()
        if is_cancelled(cancel_token):
            return []
        return list(self.local_finder.list_candidates_for(document_scope))


class RemoteKernelSource(KernelSource):
    """Live kernels and kernel specs of every registered remote server."""

    id = REMOTE_KERNEL_SOURCE_ID
    display_name = "Remote"
    type = "remote"

    def __init__(self, kernel_finder: KernelFinder):
        self.kernel_finder = kernel_finder

    async def list_kernels(
        self,
        document_scope: Any = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[KernelConnection]:
        kernels = await self.kernel_finder.list_all(document_scope, cancel_token)
        return [kernel for kernel in kernels if kernel.is_remote]


class KernelSourceService:
    """
    Registry of the available kernel sources.

    Example:
        service = KernelSourceService(local_finder, kernel_finder, web_mode=False)
        for source in service.kernel_sources:
            kernels = await source.list_kernels(document.uri)
    """

    def __init__(
        self,
        local_finder: Optional[LocalKernelFinder] = None,
        kernel_finder: Optional[KernelFinder] = None,
        web_mode: bool = False,
    ):
        self.web_mode = web_mode
        self.on_did_change_kernel_sources = EventEmitter("kernel_sources.changed")
        self._sources: List[KernelSource] = []
        if not web_mode and local_finder is not None:
            self._sources.append(LocalKernelSource(local_finder))
        if kernel_finder is not None:
            self._sources.append(RemoteKernelSource(kernel_finder))
        logger.debug(f"Kernel sources: {[source.id for source in self._sources]}")

    @classmethod
    def from_config(
        cls,
        config: SourcesConfig,
        local_finder: Optional[LocalKernelFinder] = None,
        kernel_finder: Optional[KernelFinder] = None,
    ) -> "KernelSourceService":
        """Build the registry with web mode taken from the ``sources`` section."""
        return cls(local_finder, kernel_finder, web_mode=config.web_mode)

    @property
    def kernel_sources(self) -> List[KernelSource]:
        return list(self._sources)

    def get_source(self, source_id: str) -> Optional[KernelSource]:
        return next((source for source in self._sources if source.id == source_id), None)

    def add_source(self, source: KernelSource) -> None:
        if self.get_source(source.id) is not None:
            return
        self._sources.append(source)
        self.on_did_change_kernel_sources.fire()

    def dispose(self) -> None:
        self.on_did_change_kernel_sources.dispose()


class NotebookKernelSourceTracker:
    """Remembers which kernel source each open notebook is using."""

    def __init__(self, workspace: NotebookWorkspace, service: KernelSourceService):
        self.workspace = workspace
        self.service = service
        self._sources: Dict[str, Optional[KernelSource]] = {}
        self._disposables: List[Disposable] = []

    def activate(self) -> None:
        self.workspace.on_did_open_notebook_document.event(self._on_did_open_notebook_document, self._disposables)
        self.workspace.on_did_close_notebook_document.event(self._on_did_close_notebook_document, self._disposables)
        for document in self.workspace.notebook_documents:
            self._on_did_open_notebook_document(document)

    def _on_did_open_notebook_document(self, document: NotebookDocument) -> None:
        if document.notebook_type not in NOTEBOOK_TYPES or document.uri in self._sources:
            return
        sources = self.service.kernel_sources
        self._sources[document.uri] = sources[0] if sources else None

    def _on_did_close_notebook_document(self, document: NotebookDocument) -> None:
        self._sources.pop(document.uri, None)

    def get_kernel_source(self, document: NotebookDocument) -> Optional[KernelSource]:
        return self._sources.get(document.uri)

    def set_kernel_source(self, document: NotebookDocument, source: Optional[KernelSource]) -> None:
        self._sources[document.uri] = source

    def dispose(self) -> None:
        dispose_all(self._disposables)
        self._sources.clear()
