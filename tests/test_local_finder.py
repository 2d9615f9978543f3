"""
Tests for the local kernel spec finder
"""

import json
from unittest.mock import Mock

import pytest

from kernel_finder.local_finder import LocalKernelFinder
from kernel_finder.types import ConnectionKind, PythonEnvironment

from conftest import FakeInterpreterService


def write_kernel_spec(root, name, spec):
    kernel_dir = root / name
    kernel_dir.mkdir(parents=True)
    (kernel_dir / "kernel.json").write_text(json.dumps(spec))
    return kernel_dir


class TestLocalKernelFinder:
    """Tests for LocalKernelFinder."""

    @pytest.mark.asyncio
    async def test_reads_specs_from_search_paths(self, temp_dir, kernel_finder):
        """Test kernel.json files in extra directories are discovered."""
        write_kernel_spec(temp_dir, "kf-test-r", {
            "display_name": "R (test)",
            "language": "R",
            "argv": ["R", "--slave", "-e", "IRkernel::main()", "--args", "{connection_file}"],
        })
        finder = LocalKernelFinder(kernel_finder, kernel_search_paths=[str(temp_dir)])

        await finder.refresh()
        kernels = await kernel_finder.list_all()

        found = [kernel for kernel in kernels if kernel.kernel_spec.name == "kf-test-r"]
        assert len(found) == 1
        assert found[0].kind == ConnectionKind.LOCAL_SPEC
        assert found[0].display_name == "R (test)"
        assert found[0].language == "r"
        assert found[0].finder_info.id == "local"
        finder.dispose()

    @pytest.mark.asyncio
    async def test_python_specs_bound_to_interpreter(self, kernel_finder):
        """Test python specs are resolved to an interpreter when possible."""
        env = PythonEnvironment(id="env", path="/envs/a/bin/python")
        interpreters = FakeInterpreterService()
        interpreters.details[env.path] = env
        spec_manager = Mock()
        spec_manager.get_all_specs.return_value = {
            "python3": {"resource_dir": "/k/python3", "spec": {
                "display_name": "Python 3", "language": "python", "argv": [env.path, "-m", "ipykernel_launcher"],
            }},
            "ir": {"resource_dir": "/k/ir", "spec": {"display_name": "R", "language": "R", "argv": ["R"]}},
        }
        finder = LocalKernelFinder(kernel_finder, interpreters, spec_manager=spec_manager)

        kernels = await finder.refresh()

        by_name = {kernel.kernel_spec.name: kernel for kernel in kernels}
        assert by_name["python3"].interpreter == env
        assert by_name["ir"].interpreter is None
        assert by_name["python3"].launch_args[0] == env.path

    @pytest.mark.asyncio
    async def test_failure_still_ready(self, kernel_finder):
        """Test a failing spec manager leaves the finder ready and empty."""
        spec_manager = Mock()
        spec_manager.get_all_specs.side_effect = OSError("unreadable")
        finder = LocalKernelFinder(kernel_finder, spec_manager=spec_manager)

        assert await finder.refresh() == []
        assert await kernel_finder.list_all() == []

    @pytest.mark.asyncio
    async def test_activate_fires_change(self, kernel_finder):
        """Test activation loads specs and notifies the aggregator."""
        spec_manager = Mock()
        spec_manager.get_all_specs.return_value = {}
        finder = LocalKernelFinder(kernel_finder, spec_manager=spec_manager)
        fired = []
        kernel_finder.on_did_change_kernels.event(lambda: fired.append(True))

        finder.activate()
        await finder.wait_until_ready()

        assert fired == [True]
        finder.dispose()
        assert kernel_finder.finders == []
