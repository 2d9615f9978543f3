"""
Local Kernel Finder: kernel specs installed on this machine.

Kernel specs are read through ``jupyter_client``'s KernelSpecManager, which
walks the standard Jupyter data directories plus any extra directories passed
in. Python specs are bound to an interpreter when an interpreter service is
available.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from jupyter_client.kernelspec import KernelSpecManager

from kernel_finder.events import BackgroundTasks
from kernel_finder.finder import DiscoverySource, KernelFinder
from kernel_finder.services import InterpreterService
from kernel_finder.types import (
    PYTHON_LANGUAGE,
    KernelSpec,
    LocalKernelSpecConnection,
    PythonEnvironment,
    get_kernel_id,
)

logger = logging.getLogger(__name__)


class LocalKernelFinder(DiscoverySource):
    """Lists kernel specs found on disk."""

    id = "local"
    kind = "local"
    display_name = "Local Kernel Specs"

    def __init__(
        self,
        kernel_finder: Optional[KernelFinder] = None,
        interpreter_service: Optional[InterpreterService] = None,
        kernel_search_paths: Optional[List[str]] = None,
        spec_manager: Optional[Any] = None,
    ):
        super().__init__()
        self.interpreter_service = interpreter_service
        if spec_manager is None:
            spec_manager = KernelSpecManager()
            if kernel_search_paths:
                spec_manager.kernel_dirs = list(kernel_search_paths) + list(spec_manager.kernel_dirs)
        self.spec_manager = spec_manager
        self._kernels: List[LocalKernelSpecConnection] = []
        self._ready = asyncio.Event()
        self._tasks = BackgroundTasks(self.id)
        self._registration = kernel_finder.register(self) if kernel_finder is not None else None

    def activate(self) -> None:
        self._tasks.spawn(self.refresh())

    async def wait_until_ready(self) -> None:
        await self._ready.wait()

    def list_candidates_for(self, document_scope: Any) -> List[LocalKernelSpecConnection]:
        return list(self._kernels)

    async def refresh(self) -> List[LocalKernelSpecConnection]:
        """Re-read kernel specs from disk and notify listeners."""
        try:
            loop = asyncio.get_running_loop()
            raw_specs = await loop.run_in_executor(None, self.spec_manager.get_all_specs)
            self._kernels = await self._build_connections(raw_specs)
            logger.info(f"Found {len(self._kernels)} local kernel specs")
            self.on_did_change_kernels.fire()
        except Exception as e:
            logger.error(f"Failed to list local kernel specs: {e}")
        finally:
            self._ready.set()
        return list(self._kernels)

    async def _build_connections(self, raw_specs: Dict[str, Dict[str, Any]]) -> List[LocalKernelSpecConnection]:
        specs = []
        for name, entry in sorted(raw_specs.items()):
            spec = KernelSpec.from_dict({"name": name, **entry})
            specs.append(spec)
        interpreters = await asyncio.gather(*(self._get_interpreter(spec) for spec in specs))
        return [
            LocalKernelSpecConnection(
                id=get_kernel_id(spec, interpreter),
                kernel_spec=spec,
                interpreter=interpreter,
            )
            for spec, interpreter in zip(specs, interpreters)
        ]

    async def _get_interpreter(self, spec: KernelSpec) -> Optional[PythonEnvironment]:
        if (
            self.interpreter_service is None
            or not self.interpreter_service.is_available
            or spec.language.lower() != PYTHON_LANGUAGE
            or not spec.executable
        ):
            return None
        try:
            return await self.interpreter_service.get_interpreter_details(spec.executable)
        except Exception as e:
            logger.warning(f"Failed to get interpreter details for kernel spec {spec.name}: {e}")
            return None

    def dispose(self) -> None:
        self._tasks.cancel_all()
        if self._registration is not None:
            self._registration.dispose()
        super().dispose()
