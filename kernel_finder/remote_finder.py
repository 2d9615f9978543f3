"""
Remote Kernel Finder: cached kernel listing for one remote server.

The finder serves a fast, possibly stale list of candidates and keeps it
eventually consistent with the server:

1. The first load returns the validated cache and refreshes in the background,
   or fetches from the server when the cache is empty
2. Every refresh cancels the one in flight (replace, not queue)
3. A failed refresh falls back to the cached *live* kernels only; kernel specs
   are never trusted from a stale cache
4. Kernel start triggers an immediate refresh, kernel disposal a delayed one

Cache entries are persisted per server as ``{"kernels": [...], "schema_version": ...}``
and are discarded when written by another package version.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from kernel_finder.cancellation import CancellationToken, CancellationTokenSource, race_cancellation
from kernel_finder.config import RemoteConfig
from kernel_finder.errors import TransientFetchFailure
from kernel_finder.events import BackgroundTasks, Disposable, KeyedDebouncer, dispose_all
from kernel_finder.finder import DiscoverySource, KernelFinder
from kernel_finder.logging_utils import mask_secrets
from kernel_finder.services import CachedKernelValidator, InterpreterService, SessionManagerFactory
from kernel_finder.store import Store, remove_old_cached_items
from kernel_finder.types import (
    PYTHON_LANGUAGE,
    ConnectionInfo,
    ConnectionKind,
    JupyterServer,
    KernelConnection,
    KernelSpec,
    LiveKernelModel,
    LiveRemoteKernelConnection,
    PythonEnvironment,
    RemoteKernelSpecConnection,
    compute_server_id,
    deserialize_connection,
    get_kernel_id,
    is_localhost,
    is_remote_connection,
    parse_timestamp,
    serialize_connection,
)
from kernel_finder.version import __version__

logger = logging.getLogger(__name__)

_DISPOSE_REFRESH_KEY = "kernel-disposed"


class FinderState(str, Enum):
    """Lifecycle of a remote finder's cache."""
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    REFRESHING = "refreshing"


def serialize_cache_entry(kernels: List[KernelConnection], schema_version: str = __version__) -> Dict[str, Any]:
    """Build the persisted form of a server's kernel list."""
    return {
        "kernels": [serialize_connection(kernel) for kernel in kernels],
        "schema_version": schema_version,
    }


def deserialize_cache_entry(value: Any, schema_version: str = __version__) -> List[KernelConnection]:
    """Rebuild a kernel list; entries from another schema version yield []."""
    if not isinstance(value, dict):
        return []
    kernels = value.get("kernels")
    if not isinstance(kernels, list) or value.get("schema_version") != schema_version:
        return []
    return [deserialize_connection(item) for item in kernels]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class RemoteKernelFinder(DiscoverySource):
    """
    Watches a single remote server and returns kernels from it.

    Example:
        finder = RemoteKernelFinder(server, factory, store, validator, kernel_finder)
        finder.activate()
        await finder.wait_until_ready()
        kernels = finder.kernels
    """

    kind = "remote"

    def __init__(
        self,
        server: JupyterServer,
        session_manager_factory: SessionManagerFactory,
        store: Store,
        cached_kernel_validator: CachedKernelValidator,
        kernel_finder: KernelFinder,
        kernel_lifecycle: Optional[Any] = None,
        interpreter_service: Optional[InterpreterService] = None,
        config: Optional[RemoteConfig] = None,
        schema_version: str = __version__,
    ):
        self.server = server
        self.id = f"{self.kind}-{server.server_id}"
        self.display_name = f"Remote - {server.display_name or mask_secrets(server.uri)}"
        super().__init__()

        self.session_manager_factory = session_manager_factory
        self.store = store
        self.cached_kernel_validator = cached_kernel_validator
        self.kernel_lifecycle = kernel_lifecycle
        self.interpreter_service = interpreter_service
        self.config = config or RemoteConfig()
        self.schema_version = schema_version

        self.state = FinderState.IDLE
        self._cache: List[KernelConnection] = []
        self._cache_update_source: Optional[CancellationTokenSource] = None
        self._kernel_ids_to_hide: Set[str] = set()
        self._ready = asyncio.Event()
        self._tasks = BackgroundTasks(self.id)
        self._dispose_refresh = KeyedDebouncer(self.config.dispose_refresh_delay, name=self.id)
        self._was_interpreter_available = False
        self._disposables: List[Disposable] = []

        # Unregistered from the aggregator again on dispose
        self._disposables.append(kernel_finder.register(self))

    # ------------------------------------------------------------------
    # Discovery source contract
    # ------------------------------------------------------------------

    @property
    def kernels(self) -> List[KernelConnection]:
        """Current cache; the remote finder is resource agnostic."""
        return list(self._cache)

    def list_candidates_for(self, document_scope: Any) -> List[KernelConnection]:
        return self.kernels

    async def wait_until_ready(self) -> None:
        await self._ready.wait()

    @property
    def cache_key(self) -> str:
        return f"{self.config.cache_key_prefix}-{self.server.server_id}"

    @property
    def _interpreter_available(self) -> bool:
        return self.interpreter_service is not None and self.interpreter_service.is_available

    # ------------------------------------------------------------------
    # Activation and lifecycle signals
    # ------------------------------------------------------------------

    def activate(self) -> None:
        """Warm up the cache and start listening to kernel lifecycle events."""
        self._tasks.spawn(self.load_cache())

        if self.kernel_lifecycle is not None:
            self.kernel_lifecycle.on_did_start_kernel.event(self._on_did_start_kernel, self._disposables)
            self.kernel_lifecycle.on_did_dispose_kernel.event(self._on_did_dispose_kernel, self._disposables)

        if self.interpreter_service is not None:
            self.interpreter_service.on_did_change_availability.event(
                self._on_interpreter_availability_changed, self._disposables
            )
        self._was_interpreter_available = self._interpreter_available

    def _on_did_start_kernel(self, connection: KernelConnection) -> None:
        # A new remote kernel means a new live session to list
        if is_remote_connection(connection):
            self._tasks.spawn(self.update_cache())

    def _on_did_dispose_kernel(self, connection: Optional[KernelConnection]) -> None:
        if is_remote_connection(connection):
            self._dispose_refresh.schedule(_DISPOSE_REFRESH_KEY, self.update_cache)

    def _on_interpreter_availability_changed(self, *args: Any) -> None:
        if not self._was_interpreter_available and self._interpreter_available:
            logger.info(f"[{self.id}] Interpreter lookup became available, refreshing kernels")
            self._tasks.spawn(self.update_cache())

    # ------------------------------------------------------------------
    # Cache protocol
    # ------------------------------------------------------------------

    async def load_cache(self) -> List[KernelConnection]:
        """
        Initial load.

        Returns the validated cache and refreshes in the background, or fetches
        from the server (without fallback) when the cache is empty.
        """
        logger.debug(f"[{self.id}] Load cache")
        self.state = FinderState.LOADING
        kernels: List[KernelConnection] = []
        try:
            kernels_from_cache = await self.get_from_cache()
            if kernels_from_cache:
                kernels = kernels_from_cache
                await self._write_to_cache(kernels)
                self._tasks.spawn(self.update_cache())
            else:
                try:
                    kernels = await self._list_kernels_without_cache()
                except Exception as e:
                    logger.error(f"[{self.id}] Failed to get kernels without cache: {e}")
                    kernels = []
                await self._write_to_cache(kernels)
        except Exception as e:
            logger.error(f"[{self.id}] Failed to load kernel cache: {e}")
            kernels = []
        finally:
            if self.state == FinderState.LOADING:
                self.state = FinderState.READY
            self._ready.set()
        return kernels

    async def update_cache(self) -> None:
        """
        Refresh from the server.

        Cancels any refresh in flight. Falls back to the cached live kernels
        if the server cannot be reached. A refresh cancelled by a newer one
        writes nothing.
        """
        source = CancellationTokenSource()
        previous, self._cache_update_source = self._cache_update_source, source
        if previous is not None:
            previous.cancel()
            previous.dispose()
        if self.state == FinderState.READY:
            self.state = FinderState.REFRESHING

        try:
            try:
                kernels = await self._list_kernels_without_cache(source.token)
            except Exception as e:
                logger.warning(f"[{self.id}] Could not fetch kernels from the {self.kind} server, falling back to cache: {e}")
                # The connection may be dead; only the live kernels we had are worth showing
                kernels = await self.get_from_cache(source.token)
                kernels = [item for item in kernels if item.kind == ConnectionKind.LIVE_REMOTE]

            if source.token.is_cancellation_requested:
                logger.debug(f"[{self.id}] Cache update cancelled")
                return

            await self._write_to_cache(kernels)
        except Exception as e:
            logger.error(f"[{self.id}] Failed to update kernel cache: {e}")
        finally:
            if self._cache_update_source is source:
                self._cache_update_source = None
                source.dispose()
                if self.state == FinderState.REFRESHING:
                    self.state = FinderState.READY

    async def get_from_cache(self, cancel_token: Optional[CancellationToken] = None) -> List[KernelConnection]:
        """Validated cache contents (in memory first, then the store)."""
        try:
            results = list(self._cache)
            from_store = False

            # If not in memory, check the store too
            if not results:
                value = self.store.get(self.cache_key, {"kernels": [], "schema_version": ""})
                results = deserialize_cache_entry(value, self.schema_version)
                from_store = True

            flags = await race_cancellation(
                asyncio.gather(*(self._is_valid_cached_kernel(item) for item in results)),
                cancel_token,
                default=None,
            )
            if flags is None:
                return []
            validated = [item for item, valid in zip(results, flags) if valid]
            # Only validated entries of the store reach memory
            if from_store and validated:
                self._cache = list(validated)
            return validated
        except Exception as e:
            logger.error(f"[{self.id}] Failed to get from cache: {e}")
        return []

    async def _is_valid_cached_kernel(self, kernel: KernelConnection) -> bool:
        if kernel.kind == ConnectionKind.REMOTE_SPEC:
            # Always fetch the latest specs, they can change without a running session
            return False
        try:
            return bool(await _maybe_await(self.cached_kernel_validator.is_valid(kernel)))
        except Exception as e:
            logger.warning(f"[{self.id}] Failed to validate cached kernel {kernel.id}: {e}")
            return False

    async def _write_to_cache(self, values: List[KernelConnection]) -> None:
        try:
            logger.debug(f"[{self.id}] Writing {len(values)} remote kernel connections to cache")
            self._cache = list(values)
            await asyncio.gather(
                remove_old_cached_items(self.store),
                self.store.set(self.cache_key, serialize_cache_entry(values, self.schema_version)),
            )
            self.on_did_change_kernels.fire()
        except Exception as e:
            logger.error(f"[{self.id}] Failed to write to cache: {e}")

    async def hide_kernel(self, kernel_id: str) -> None:
        """Exclude a live kernel from this and every later listing."""
        self._kernel_ids_to_hide.add(kernel_id)
        if any(kernel.id == kernel_id for kernel in self._cache):
            await self._write_to_cache([kernel for kernel in self._cache if kernel.id != kernel_id])

    # ------------------------------------------------------------------
    # Live fetch
    # ------------------------------------------------------------------

    def get_remote_connection_info(self) -> ConnectionInfo:
        return ConnectionInfo(
            url=self.server.uri,
            base_url=self.server.uri,
            display_name=self.server.display_name,
        )

    async def _list_kernels_without_cache(
        self,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[KernelConnection]:
        connection = self.get_remote_connection_info()
        return await self.list_kernels_from_connection(connection)

    async def list_kernels_from_connection(self, connection: ConnectionInfo) -> List[KernelConnection]:
        """
        Talk to the remote server to determine sessions and kernel specs.

        Args:
            connection: Server to query

        Returns:
            Live kernels (minus hidden ones) followed by kernel specs

        Raises:
            TransientFetchFailure: If the server cannot be queried
        """
        self._was_interpreter_available = self._interpreter_available
        session_manager = None
        try:
            session_manager = await _maybe_await(self.session_manager_factory.create(connection))

            # Get running and specs at the same time
            running, raw_specs, sessions = await asyncio.gather(
                session_manager.get_running_kernels(),
                session_manager.get_kernel_specs(),
                session_manager.get_running_sessions(),
            )
            server_id = compute_server_id(connection.url)

            specs = [spec if isinstance(spec, KernelSpec) else KernelSpec.from_dict(spec) for spec in raw_specs]
            interpreters = await asyncio.gather(
                *(self._get_interpreter(spec, connection.base_url) for spec in specs)
            )
            mapped_specs = [
                RemoteKernelSpecConnection(
                    id=get_kernel_id(spec, None, server_id),
                    server_id=server_id,
                    base_url=connection.base_url,
                    kernel_spec=spec,
                    interpreter=interpreter,
                )
                for spec, interpreter in zip(specs, interpreters)
            ]

            mapped_live = [
                self._to_live_connection(session, running, specs, server_id, connection.base_url)
                for session in sessions
            ]
            filtered = [kernel for kernel in mapped_live if kernel.kernel_model.id not in self._kernel_ids_to_hide]

            logger.info(
                f"[{self.id}] Listed {len(filtered)} live kernels and {len(mapped_specs)} kernel specs "
                f"from {mask_secrets(connection.url)}"
            )
            return [*filtered, *mapped_specs]
        except Exception as e:
            logger.error(f"[{self.id}] Error fetching remote kernels: {e}")
            raise TransientFetchFailure(self.server.server_id, e) from e
        finally:
            if session_manager is not None:
                try:
                    await session_manager.dispose()
                except Exception as e:
                    logger.warning(f"[{self.id}] Failed to dispose session manager: {e}")

    @staticmethod
    def _to_live_connection(
        session: Dict[str, Any],
        running: List[Dict[str, Any]],
        specs: List[KernelSpec],
        server_id: str,
        base_url: str,
    ) -> LiveRemoteKernelConnection:
        kernel = session.get("kernel") or {}
        kernel_id = kernel.get("id") or ""
        kernel_name = kernel.get("name") or ""
        active = next((item for item in running if item.get("id") == kernel_id), {})
        matching_spec = next((spec for spec in specs if spec.name == kernel_name), None)

        try:
            connections = int(str(kernel.get("connections", active.get("connections", 0)) or 0))
        except ValueError:
            connections = 0

        model = LiveKernelModel(
            id=kernel_id,
            name=kernel_name,
            display_name=matching_spec.display_name if matching_spec else "",
            language=matching_spec.language if matching_spec else "",
            argv=list(matching_spec.argv) if matching_spec else [],
            execution_state=active.get("execution_state") or kernel.get("execution_state") or "",
            last_activity_time=parse_timestamp(kernel.get("last_activity") or active.get("last_activity")),
            number_of_connections=connections,
            session=dict(session),
        )
        return LiveRemoteKernelConnection(
            id=kernel_id,
            server_id=server_id,
            base_url=base_url,
            kernel_model=model,
        )

    async def _get_interpreter(self, spec: KernelSpec, base_url: str) -> Optional[PythonEnvironment]:
        # Only possible when the server runs on this machine
        if (
            is_localhost(base_url)
            and self._interpreter_available
            and (spec.language or "").lower() == PYTHON_LANGUAGE
            and spec.executable
        ):
            try:
                logger.debug(f"[{self.id}] Getting interpreter details for localhost remote kernel: {spec.name}")
                return await self.interpreter_service.get_interpreter_details(spec.executable)
            except Exception as e:
                logger.error(f"[{self.id}] Failure getting interpreter details for remote kernel {spec.name}: {e}")
        return None

    # ------------------------------------------------------------------

    def dispose(self) -> None:
        self._dispose_refresh.dispose()
        if self._cache_update_source is not None:
            self._cache_update_source.cancel()
            self._cache_update_source.dispose()
            self._cache_update_source = None
        self._tasks.cancel_all()
        dispose_all(self._disposables)
        super().dispose()
        logger.debug(f"[{self.id}] Disposed")
