"""
Preferred Kernel Service: decide which controller to recommend per notebook.

For every opened notebook the service:
1. Waits a short debounce (documents are often opened in bursts)
2. Asks the default controller service for a shortcut where one applies
3. Otherwise ranks all known candidates and accepts the top one only when it
   is a confident match
4. Marks the winning controller as ``Preferred`` and the previous one as ``Default``

Every computation owns a cancellation source; a newer computation or closing
the notebook cancels it, and a cancelled computation changes nothing.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from kernel_finder.cancellation import CancellationToken, CancellationTokenSource
from kernel_finder.config import PreferredConfig
from kernel_finder.controllers import ControllerRegistry, ControllerSelection, KernelController
from kernel_finder.errors import ResolutionFailure
from kernel_finder.events import Disposable, KeyedDebouncer, dispose_all
from kernel_finder.finder import KernelFinder
from kernel_finder.ranking import KernelRankingHelper, PreferredMatch
from kernel_finder.services import DefaultControllerService, InterpreterService
from kernel_finder.telemetry import KERNEL_RESOURCE_INFO, PREFERRED_KERNEL, Telemetry
from kernel_finder.types import (
    INTERACTIVE_WINDOW_VIEW,
    JUPYTER_NOTEBOOK_VIEW,
    NOTEBOOK_TYPES,
    PYTHON_LANGUAGE,
    Affinity,
    KernelConnection,
    NotebookDocument,
    PythonEnvironment,
    get_language_in_notebook_metadata,
    is_python_notebook,
)
from kernel_finder.workspace import NotebookWorkspace

logger = logging.getLogger(__name__)


@dataclass
class PreferredResult:
    """Outcome of one preferred-kernel computation."""
    preferred_connection: Optional[KernelConnection] = None
    controller: Optional[KernelController] = None

    @property
    def found(self) -> bool:
        return self.controller is not None


class ControllerPreferredService:
    """
    Computes the preferred controller of each open notebook.

    Example:
        service = ControllerPreferredService(finder, registry, ranking, workspace, selection)
        service.activate()
        result = await service.compute_preferred(document)
    """

    def __init__(
        self,
        kernel_finder: KernelFinder,
        registry: ControllerRegistry,
        ranking: KernelRankingHelper,
        workspace: NotebookWorkspace,
        selection: ControllerSelection,
        default_service: Optional[DefaultControllerService] = None,
        interpreter_service: Optional[InterpreterService] = None,
        telemetry: Optional[Telemetry] = None,
        is_local_launch: bool = True,
        config: Optional[PreferredConfig] = None,
    ):
        self.kernel_finder = kernel_finder
        self.registry = registry
        self.ranking = ranking
        self.workspace = workspace
        self.selection = selection
        self.default_service = default_service
        self.interpreter_service = interpreter_service
        self.telemetry = telemetry or Telemetry()
        self.is_local_launch = is_local_launch
        self.config = config or PreferredConfig()

        self._preferred_controllers: Dict[str, KernelController] = {}
        self._preferred_cancel_sources: Dict[str, CancellationTokenSource] = {}
        self._debouncer = KeyedDebouncer(self.config.open_debounce, name="preferred")
        self._disposables: List[Disposable] = []

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    def activate(self) -> None:
        self.workspace.on_did_open_notebook_document.event(self._on_did_open_notebook_document, self._disposables)
        self.workspace.on_did_close_notebook_document.event(self._on_did_close_notebook_document, self._disposables)
        # New controllers can make a better match possible
        self.registry.on_created.event(self._on_did_create_controllers, self._disposables)
        for document in self.workspace.notebook_documents:
            self._on_did_open_notebook_document(document)

    def _on_did_create_controllers(self, *args: Any) -> None:
        for document in self.workspace.notebook_documents:
            self._on_did_open_notebook_document(document)

    def _should_skip(self, document: NotebookDocument) -> bool:
        if not self.workspace.is_trusted:
            return True
        if document.notebook_type not in NOTEBOOK_TYPES:
            return True
        # The user already picked a kernel
        return self.selection.get_selected(document) is not None

    def _on_did_open_notebook_document(self, document: NotebookDocument) -> None:
        if self._should_skip(document):
            return
        self._debouncer.schedule(document.uri, lambda: self.compute_preferred(document))

    def _on_did_close_notebook_document(self, document: NotebookDocument) -> None:
        self._debouncer.cancel(document.uri)
        source = self._preferred_cancel_sources.pop(document.uri, None)
        if source is not None:
            source.cancel()
        self._preferred_controllers.pop(document.uri, None)

    async def wait_for_pending(self) -> None:
        """Wait for debounced computations that are scheduled or running."""
        await self._debouncer.drain()

    # ------------------------------------------------------------------
    # Computation
    # ------------------------------------------------------------------

    async def compute_preferred(
        self,
        document: NotebookDocument,
        server_id: Optional[str] = None,
    ) -> PreferredResult:
        """
        Find and apply the preferred controller for a notebook.

        Args:
            document: Notebook to compute for
            server_id: Restrict candidates to one remote server

        Returns:
            The preferred connection and its controller; empty when nothing
            qualified, the computation was cancelled or it failed
        """
        if self._should_skip(document):
            return PreferredResult()

        uri = document.uri
        source = CancellationTokenSource()
        previous = self._preferred_cancel_sources.get(uri)
        self._preferred_cancel_sources[uri] = source
        if previous is not None:
            previous.cancel()
            previous.dispose()
        token = source.token

        try:
            preferred_connection: Optional[KernelConnection] = None
            metadata = document.metadata
            resource_type = document.resource_type
            is_python_or_interactive = is_python_notebook(metadata) or resource_type == "interactive"

            if (
                document.notebook_type == JUPYTER_NOTEBOOK_VIEW
                and not self.is_local_launch
                and is_python_or_interactive
                and self.default_service is not None
            ):
                default_controller = await self.default_service.compute_default_controller(uri, document.notebook_type)
                if default_controller is not None:
                    preferred_connection = default_controller.connection
                    logger.debug(f"Using default controller {default_controller.id} as preferred for {uri}")
                if token.is_cancellation_requested:
                    logger.debug(f"Preferred kernel computation cancelled for {uri}")
                    return PreferredResult()

            if document.notebook_type == JUPYTER_NOTEBOOK_VIEW and preferred_connection is None:
                preferred_interpreter = await self._get_preferred_interpreter(
                    document, server_id, is_python_or_interactive
                )
                if token.is_cancellation_requested:
                    logger.debug(f"Preferred kernel computation cancelled for {uri}")
                    return PreferredResult()

                match = await self._find_preferred_kernel_exact_match(document, token, preferred_interpreter, server_id)
                preferred_connection = match.preferred
                # The pool may have changed while ranking, give it one more chance
                if preferred_connection is None and self.config.retry_ranking and not token.is_cancellation_requested:
                    match = await self._find_preferred_kernel_exact_match(
                        document, token, preferred_interpreter, server_id
                    )
                    preferred_connection = match.preferred
                if token.is_cancellation_requested:
                    logger.debug(f"Preferred kernel computation cancelled for {uri}")
                    return PreferredResult()

                self._send_preferred_kernel_telemetry(document, preferred_connection, preferred_interpreter)
                if preferred_connection is None:
                    logger.info(f"No preferred kernel found for {uri}")
                    return PreferredResult()

                if self.registry.get(preferred_connection, JUPYTER_NOTEBOOK_VIEW) is None:
                    logger.debug(f"Registering controller for preferred kernel {preferred_connection.id}")
                    self.registry.add(preferred_connection, [JUPYTER_NOTEBOOK_VIEW])

            elif document.notebook_type == INTERACTIVE_WINDOW_VIEW:
                await self.registry.wait_until_loaded()
                if token.is_cancellation_requested:
                    logger.debug(f"Preferred kernel computation cancelled for {uri}")
                    return PreferredResult()
                if self.default_service is not None:
                    default_controller = await self.default_service.compute_default_controller(
                        uri, INTERACTIVE_WINDOW_VIEW
                    )
                    if default_controller is not None:
                        preferred_connection = default_controller.connection
                if token.is_cancellation_requested:
                    logger.debug(f"Preferred kernel computation cancelled for {uri}")
                    return PreferredResult()

            target_controller = (
                self.registry.get(preferred_connection, document.notebook_type)
                if preferred_connection is not None
                else None
            )
            if target_controller is None:
                return PreferredResult(preferred_connection=preferred_connection)

            # The user may have picked a kernel while we were ranking
            if self.selection.get_selected(document) is not None:
                logger.debug(f"Explicit selection made for {uri}, not applying preferred controller")
                return PreferredResult()

            # Both affinities change together, never only the demotion
            previous_controller = self._preferred_controllers.get(uri)
            if previous_controller is not None and previous_controller is not target_controller:
                await previous_controller.update_notebook_affinity(document, Affinity.DEFAULT)
            await target_controller.update_notebook_affinity(document, Affinity.PREFERRED)
            if token.is_cancellation_requested:
                # Keep the mapping in line with the affinities unless the document was closed
                if uri in self._preferred_cancel_sources:
                    self._preferred_controllers[uri] = target_controller
                logger.debug(f"Preferred kernel computation cancelled for {uri}")
                return PreferredResult()

            self._track_kernel_resource_information(document, preferred_connection)
            self._preferred_controllers[uri] = target_controller
            logger.info(f"Preferred controller for {uri}: {target_controller.id}")
            return PreferredResult(preferred_connection=preferred_connection, controller=target_controller)
        except Exception as e:
            logger.error(f"Failed to find & set preferred controllers for {uri}: {e}")
            return PreferredResult()
        finally:
            if self._preferred_cancel_sources.get(uri) is source:
                del self._preferred_cancel_sources[uri]
            source.dispose()

    async def _get_preferred_interpreter(
        self,
        document: NotebookDocument,
        server_id: Optional[str],
        is_python_or_interactive: bool,
    ) -> Optional[PythonEnvironment]:
        if server_id or not is_python_or_interactive:
            return None
        if self.interpreter_service is None or not self.interpreter_service.is_available:
            return None
        try:
            return await self.interpreter_service.get_active_interpreter(document.uri)
        except Exception as e:
            logger.warning(str(ResolutionFailure(f"active interpreter of {document.uri}", e)))
            return None

    async def _find_preferred_kernel_exact_match(
        self,
        document: NotebookDocument,
        cancel_token: CancellationToken,
        preferred_interpreter: Optional[PythonEnvironment],
        server_id: Optional[str],
    ) -> PreferredMatch:
        kernels = await self.kernel_finder.list_all(document.uri, cancel_token)
        if cancel_token.is_cancellation_requested:
            return PreferredMatch()
        return await self.ranking.find_preferred(
            document.uri,
            kernels,
            document.metadata,
            preferred_interpreter,
            cancel_token,
            server_id,
        )

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    def _send_preferred_kernel_telemetry(
        self,
        document: NotebookDocument,
        preferred_connection: Optional[KernelConnection],
        preferred_interpreter: Optional[PythonEnvironment],
    ) -> None:
        if document.resource_type == "interactive":
            language = PYTHON_LANGUAGE
        else:
            language = get_language_in_notebook_metadata(document.metadata) or ""
        self.telemetry.send_event(
            PREFERRED_KERNEL,
            properties={
                "result": "found" if preferred_connection is not None else "notfound",
                "resourceType": document.resource_type,
                "language": language,
                "hasActiveInterpreter": preferred_interpreter is not None,
            },
        )

    def _track_kernel_resource_information(self, document: NotebookDocument, connection: KernelConnection) -> None:
        self.telemetry.send_event(
            KERNEL_RESOURCE_INFO,
            properties={
                "resourceType": document.resource_type,
                "kernelConnectionKind": connection.kind.value,
                "kernelLanguage": connection.language,
                "isPreferredKernel": True,
            },
        )

    # ------------------------------------------------------------------

    def get_preferred(self, document: NotebookDocument) -> Optional[KernelController]:
        return self._preferred_controllers.get(document.uri)

    def dispose(self) -> None:
        self._debouncer.dispose()
        for source in self._preferred_cancel_sources.values():
            source.cancel()
        self._preferred_cancel_sources.clear()
        self._preferred_controllers.clear()
        dispose_all(self._disposables)
