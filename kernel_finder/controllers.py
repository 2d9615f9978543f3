"""
Controller registry: the live set of selectable kernels per notebook type.

A controller wraps one candidate connection for one notebook type. The
preferred-kernel service resolves its final answer against this registry
rather than against a ranking snapshot, so it always acts on the current
object.
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from kernel_finder.cancellation import CancellationToken
from kernel_finder.events import EventEmitter
from kernel_finder.finder import KernelFinder
from kernel_finder.types import (
    INTERACTIVE_WINDOW_VIEW,
    JUPYTER_NOTEBOOK_VIEW,
    NOTEBOOK_TYPES,
    Affinity,
    KernelConnection,
    NotebookDocument,
)
from kernel_finder.workspace import NotebookWorkspace

logger = logging.getLogger(__name__)


def get_controller_id(connection: KernelConnection, notebook_type: str) -> str:
    if notebook_type == INTERACTIVE_WINDOW_VIEW:
        return f"{connection.id} (Interactive)"
    return connection.id


class KernelController:
    """One candidate connection exposed for one notebook type."""

    def __init__(self, connection: KernelConnection, notebook_type: str, workspace: NotebookWorkspace):
        self.connection = connection
        self.notebook_type = notebook_type
        self.workspace = workspace
        self.id = get_controller_id(connection, notebook_type)

    @property
    def label(self) -> str:
        return self.connection.display_name

    async def update_notebook_affinity(self, document: NotebookDocument, affinity: Affinity) -> None:
        await self.workspace.set_affinity(document, self.id, affinity)

    def __repr__(self) -> str:
        return f"<KernelController {self.id} ({self.notebook_type})>"


class ControllerRegistry:
    """
    Registered controllers keyed by (connection id, notebook type).

    Example:
        registry = ControllerRegistry(workspace)
        registry.add(connection, [JUPYTER_NOTEBOOK_VIEW])
        controller = registry.get(connection, JUPYTER_NOTEBOOK_VIEW)
    """

    def __init__(self, workspace: NotebookWorkspace):
        self.workspace = workspace
        self._controllers: Dict[Tuple[str, str], KernelController] = {}
        self._loaded = asyncio.Event()
        self.on_created = EventEmitter("controllers.created")

    @property
    def registered(self) -> List[KernelController]:
        return list(self._controllers.values())

    def add(
        self,
        connection: KernelConnection,
        notebook_types: Iterable[str] = NOTEBOOK_TYPES,
    ) -> List[KernelController]:
        """Create controllers that do not exist yet; returns the new ones."""
        created = []
        for notebook_type in notebook_types:
            key = (connection.id, notebook_type)
            if key in self._controllers:
                continue
            controller = KernelController(connection, notebook_type, self.workspace)
            self._controllers[key] = controller
            created.append(controller)
            logger.debug(f"Registered controller {controller.id} for {notebook_type}")
        if created:
            self.on_created.fire(created)
        return created

    def get(self, connection: KernelConnection, notebook_type: str) -> Optional[KernelController]:
        return self._controllers.get((connection.id, notebook_type))

    def remove(self, connection_id: str) -> None:
        for key in [key for key in self._controllers if key[0] == connection_id]:
            del self._controllers[key]

    async def load_from(
        self,
        kernel_finder: KernelFinder,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[KernelController]:
        """Register a controller for every candidate the finder lists."""
        created: List[KernelController] = []
        for connection in await kernel_finder.list_all(None, cancel_token):
            created.extend(self.add(connection, [JUPYTER_NOTEBOOK_VIEW, INTERACTIVE_WINDOW_VIEW]))
        self._loaded.set()
        logger.info(f"Loaded {len(created)} new controllers")
        return created

    def mark_loaded(self) -> None:
        self._loaded.set()

    @property
    def is_loaded(self) -> bool:
        return self._loaded.is_set()

    async def wait_until_loaded(self) -> None:
        await self._loaded.wait()


class ControllerSelection:
    """Explicit controller choices made by the user, per document uri."""

    def __init__(self, workspace: Optional[NotebookWorkspace] = None):
        self._selected: Dict[str, KernelController] = {}
        if workspace is not None:
            workspace.on_did_close_notebook_document.event(self._on_did_close)

    def select(self, document: NotebookDocument, controller: KernelController) -> None:
        self._selected[document.uri] = controller

    def get_selected(self, document: NotebookDocument) -> Optional[KernelController]:
        return self._selected.get(document.uri)

    def _on_did_close(self, document: NotebookDocument) -> None:
        self._selected.pop(document.uri, None)
