"""
Tests for kernel sources and the per-notebook source tracker
"""

import pytest

from kernel_finder.config import SourcesConfig
from kernel_finder.local_finder import LocalKernelFinder
from kernel_finder.sources import (
    LOCAL_KERNEL_SOURCE_ID,
    REMOTE_KERNEL_SOURCE_ID,
    KernelSourceService,
    LocalKernelSource,
    NotebookKernelSourceTracker,
)
from kernel_finder.types import NotebookDocument

from conftest import StaticSource, make_live, make_local, make_remote_spec


class FakeSpecManager:
    """Stands in for jupyter_client's KernelSpecManager."""

    def __init__(self, specs=None):
        self.specs = specs or {}

    def get_all_specs(self):
        return dict(self.specs)


PYTHON_SPEC = {
    "resource_dir": "/usr/share/jupyter/kernels/python3",
    "spec": {"display_name": "Python 3", "language": "python", "argv": ["python3", "-m", "ipykernel_launcher"]},
}


class TestKernelSourceService:
    """Tests for KernelSourceService."""

    def test_local_and_remote_sources(self, kernel_finder):
        """Test both sources exist outside web mode."""
        local = LocalKernelFinder(spec_manager=FakeSpecManager())
        service = KernelSourceService(local, kernel_finder)
        assert [source.id for source in service.kernel_sources] == [LOCAL_KERNEL_SOURCE_ID, REMOTE_KERNEL_SOURCE_ID]
        assert service.get_source(LOCAL_KERNEL_SOURCE_ID).display_name == "Local"

    def test_web_mode_has_no_local_source(self, kernel_finder):
        """Test web mode only offers remote kernels."""
        local = LocalKernelFinder(spec_manager=FakeSpecManager())
        service = KernelSourceService(local, kernel_finder, web_mode=True)
        assert [source.id for source in service.kernel_sources] == [REMOTE_KERNEL_SOURCE_ID]

    def test_from_config_reads_web_mode(self, kernel_finder):
        """Test the sources section decides whether the local source exists."""
        local = LocalKernelFinder(spec_manager=FakeSpecManager())
        web = KernelSourceService.from_config(SourcesConfig(web_mode=True), local, kernel_finder)
        desktop = KernelSourceService.from_config(SourcesConfig(), local, kernel_finder)
        assert web.web_mode is True
        assert [source.id for source in web.kernel_sources] == [REMOTE_KERNEL_SOURCE_ID]
        assert desktop.get_source(LOCAL_KERNEL_SOURCE_ID) is not None

    @pytest.mark.asyncio
    async def test_local_source_lists_local_specs(self):
        """Test the local source lists what the local finder found."""
        local = LocalKernelFinder(spec_manager=FakeSpecManager({"python3": PYTHON_SPEC}))
        await local.refresh()

        kernels = await LocalKernelSource(local).list_kernels("file:///a.ipynb")

        assert [kernel.kernel_spec.name for kernel in kernels] == ["python3"]

    @pytest.mark.asyncio
    async def test_local_source_without_finder(self):
        """Test a missing local capability lists nothing."""
        assert await LocalKernelSource(None).list_kernels() == []

    @pytest.mark.asyncio
    async def test_remote_source_lists_remote_candidates(self, kernel_finder):
        """Test the remote source filters the aggregated pool to remote candidates."""
        kernel_finder.register(StaticSource("mixed", [make_local(), make_live(), make_remote_spec()]))
        service = KernelSourceService(None, kernel_finder)

        kernels = await service.get_source(REMOTE_KERNEL_SOURCE_ID).list_kernels()

        assert all(kernel.is_remote for kernel in kernels)
        assert len(kernels) == 2

    def test_add_source_fires_change(self, kernel_finder):
        """Test adding a source notifies listeners once."""
        service = KernelSourceService(None, None)
        fired = []
        service.on_did_change_kernel_sources.event(lambda: fired.append(True))
        source = LocalKernelSource(None)

        service.add_source(source)
        service.add_source(source)

        assert fired == [True]


class TestNotebookKernelSourceTracker:
    """Tests for NotebookKernelSourceTracker."""

    def test_open_document_gets_first_source(self, workspace, kernel_finder):
        """Test opened notebooks default to the first source and can be overridden."""
        local = LocalKernelFinder(spec_manager=FakeSpecManager())
        service = KernelSourceService(local, kernel_finder)
        tracker = NotebookKernelSourceTracker(workspace, service)
        tracker.activate()

        document = workspace.open_document(NotebookDocument(uri="file:///a.ipynb"))
        assert tracker.get_kernel_source(document).id == LOCAL_KERNEL_SOURCE_ID

        remote = service.get_source(REMOTE_KERNEL_SOURCE_ID)
        tracker.set_kernel_source(document, remote)
        assert tracker.get_kernel_source(document) is remote

        workspace.close_document(document)
        assert tracker.get_kernel_source(document) is None
        tracker.dispose()

    def test_no_sources(self, workspace):
        """Test a notebook opened without sources tracks None."""
        tracker = NotebookKernelSourceTracker(workspace, KernelSourceService())
        tracker.activate()
        document = workspace.open_document(NotebookDocument(uri="file:///a.ipynb"))
        assert tracker.get_kernel_source(document) is None
