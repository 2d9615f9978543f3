"""
In-process host model: open notebooks, workspace trust, controller affinity
and kernel lifecycle signals.

Editors embed the kernel finder by driving these objects: they call
``open_document``/``close_document`` as notebooks come and go, and read
affinities back to decide which controller to recommend.
"""

import logging
from typing import Dict, List, Tuple

from kernel_finder.events import EventEmitter
from kernel_finder.types import Affinity, KernelConnection, NotebookDocument

logger = logging.getLogger(__name__)


class NotebookWorkspace:
    """Documents currently open in the host, and the affinity hints set on them."""

    def __init__(self, is_trusted: bool = True):
        self.is_trusted = is_trusted
        self._documents: Dict[str, NotebookDocument] = {}
        self._affinities: Dict[Tuple[str, str], Affinity] = {}
        self.on_did_open_notebook_document = EventEmitter("workspace.open")
        self.on_did_close_notebook_document = EventEmitter("workspace.close")

    @property
    def notebook_documents(self) -> List[NotebookDocument]:
        return list(self._documents.values())

    def open_document(self, document: NotebookDocument) -> NotebookDocument:
        self._documents[document.uri] = document
        logger.debug(f"Opened {document.uri} ({document.notebook_type})")
        self.on_did_open_notebook_document.fire(document)
        return document

    def close_document(self, document: NotebookDocument) -> None:
        self._documents.pop(document.uri, None)
        for key in [key for key in self._affinities if key[0] == document.uri]:
            del self._affinities[key]
        logger.debug(f"Closed {document.uri}")
        self.on_did_close_notebook_document.fire(document)

    async def set_affinity(self, document: NotebookDocument, controller_id: str, affinity: Affinity) -> None:
        self._affinities[(document.uri, controller_id)] = affinity

    def get_affinity(self, document: NotebookDocument, controller_id: str) -> Affinity:
        return self._affinities.get((document.uri, controller_id), Affinity.DEFAULT)

    def preferred_controller_ids(self, document: NotebookDocument) -> List[str]:
        return [
            controller_id
            for (uri, controller_id), affinity in self._affinities.items()
            if uri == document.uri and affinity == Affinity.PREFERRED
        ]


class KernelLifecycle:
    """Kernel start/dispose notifications from the kernel runtime."""

    def __init__(self):
        self.on_did_start_kernel = EventEmitter("kernels.start")
        self.on_did_dispose_kernel = EventEmitter("kernels.dispose")

    def notify_started(self, connection: KernelConnection) -> None:
        self.on_did_start_kernel.fire(connection)

    def notify_disposed(self, connection: KernelConnection) -> None:
        self.on_did_dispose_kernel.fire(connection)
