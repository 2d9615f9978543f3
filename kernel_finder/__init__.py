"""
kernel_finder: Kernel discovery, caching and preferred-kernel selection

This package finds the kernels a notebook can run on and decides which one to
recommend:
- Discovery sources (local kernel specs, one cached finder per remote server)
- An aggregator that waits for every source before listing candidates
- Deterministic ranking and a conservative preferred-kernel policy
- A per-document coordinator with debouncing and cancellation
"""

from kernel_finder.version import __version__

__all__ = [
    # Aggregation
    "DiscoverySource",
    "KernelFinder",
    # Finders
    "LocalKernelFinder",
    "RemoteKernelFinder",
    # Ranking and selection
    "KernelRankingHelper",
    "ControllerPreferredService",
    "ControllerRegistry",
    "ControllerSelection",
    # Sources
    "KernelSourceService",
    "NotebookKernelSourceTracker",
    # Host model
    "NotebookWorkspace",
    "KernelLifecycle",
    # Configuration
    "get_config",
    "load_config",
]


def __getattr__(name):
    """Lazy imports to avoid pulling in jupyter_client until needed."""
    if name in ("DiscoverySource", "KernelFinder"):
        from kernel_finder.finder import DiscoverySource, KernelFinder
        return locals()[name]
    elif name == "LocalKernelFinder":
        from kernel_finder.local_finder import LocalKernelFinder
        return LocalKernelFinder
    elif name == "RemoteKernelFinder":
        from kernel_finder.remote_finder import RemoteKernelFinder
        return RemoteKernelFinder
    elif name == "KernelRankingHelper":
        from kernel_finder.ranking import KernelRankingHelper
        return KernelRankingHelper
    elif name == "ControllerPreferredService":
        from kernel_finder.preferred import ControllerPreferredService
        return ControllerPreferredService
    elif name in ("ControllerRegistry", "ControllerSelection"):
        from kernel_finder.controllers import ControllerRegistry, ControllerSelection
        return locals()[name]
    elif name in ("KernelSourceService", "NotebookKernelSourceTracker"):
        from kernel_finder.sources import KernelSourceService, NotebookKernelSourceTracker
        return locals()[name]
    elif name in ("NotebookWorkspace", "KernelLifecycle"):
        from kernel_finder.workspace import KernelLifecycle, NotebookWorkspace
        return locals()[name]
    elif name in ("get_config", "load_config"):
        from kernel_finder.config import get_config, load_config
        return locals()[name]
    raise AttributeError(f"module 'kernel_finder' has no attribute '{name}'")
