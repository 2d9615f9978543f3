"""
Kernel Finder: aggregation of discovery sources.

The finder provides:
1. Registration of discovery sources (local specs, one source per remote server)
2. Fan-in of their change notifications into one ``on_did_change_kernels`` event
3. A combined candidate listing that waits for every source to be ready

Consumers never receive a change payload: on notification they call
:meth:`KernelFinder.list_all` again.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional

from kernel_finder.cancellation import CancellationToken, is_cancelled
from kernel_finder.events import Disposable, EventEmitter, dispose_all
from kernel_finder.types import KernelConnection, KernelFinderInfo

logger = logging.getLogger(__name__)


class DiscoverySource(ABC):
    """
    Abstract base class for anything that can list candidate connections.

    Subclasses must set ``id``, ``kind`` and ``display_name`` and implement:
        - wait_until_ready(): resolves once the first listing is available
        - list_candidates_for(): candidates for a document scope
    """

    id: str = "base"
    kind: str = "base"
    display_name: str = "Base"

    def __init__(self):
        self.on_did_change_kernels = EventEmitter(f"{self.kind}.kernels")

    @abstractmethod
    async def wait_until_ready(self) -> None:
        pass

    @abstractmethod
    def list_candidates_for(self, document_scope: Any) -> List[KernelConnection]:
        pass

    @property
    def info(self) -> KernelFinderInfo:
        return KernelFinderInfo(id=self.id, display_name=self.display_name)

    def dispose(self) -> None:
        self.on_did_change_kernels.dispose()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id}>"


class KernelFinder:
    """
    Composes discovery sources behind one interface.

    Example:
        finder = KernelFinder()
        finder.register(local_finder)
        kernels = await finder.list_all(document.uri)
    """

    def __init__(self):
        self._finders: List[DiscoverySource] = []
        self._subscriptions: List[Disposable] = []
        self.on_did_change_kernels = EventEmitter("kernel_finder.kernels")

    def register(self, finder: DiscoverySource) -> Disposable:
        """
        Register a discovery source.

        Args:
            finder: Source to add; queried after every source registered before it

        Returns:
            Handle that unregisters the source when disposed
        """
        self._finders.append(finder)
        subscription = finder.on_did_change_kernels.event(self.on_did_change_kernels.fire)
        self._subscriptions.append(subscription)
        logger.debug(f"Registered kernel finder: {finder.id} ({finder.kind})")

        def _unregister():
            if finder in self._finders:
                self._finders.remove(finder)
            subscription.dispose()
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
            logger.debug(f"Unregistered kernel finder: {finder.id}")

        return Disposable(_unregister)

    @property
    def finders(self) -> List[DiscoverySource]:
        return list(self._finders)

    def registered_finder_info(self) -> List[KernelFinderInfo]:
        """Give the info for what kernel finders are currently registered."""
        return [finder.info for finder in self._finders]

    async def list_all(
        self,
        document_scope: Any = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[KernelConnection]:
        """
        List candidates from every registered source.

        Args:
            document_scope: Document the candidates are listed for (may be None)
            cancel_token: Checked once, after all sources are ready

        Returns:
            Candidates in registration order, each stamped with its source info
        """
        finders = list(self._finders)

        # Wait for all finders to warm up their cache first
        await asyncio.gather(*(finder.wait_until_ready() for finder in finders))

        if is_cancelled(cancel_token):
            return []

        kernels: List[KernelConnection] = []
        for finder in finders:
            info = finder.info
            for connection in finder.list_candidates_for(document_scope):
                connection.finder_info = info
                kernels.append(connection)

        logger.debug(f"Listed {len(kernels)} kernels from {len(finders)} finders")
        return kernels

    def dispose(self) -> None:
        dispose_all(self._subscriptions)
        self.on_did_change_kernels.dispose()
