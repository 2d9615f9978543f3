"""
Tests for kernel ranking and preferred-kernel matching
"""

import pytest

from kernel_finder.cancellation import CancellationTokenSource
from kernel_finder.ranking import (
    KernelRankingHelper,
    PreferredKernelExactMatchReason,
    PreferredMatchReason,
    find_kernel_spec_matching_interpreter,
)
from kernel_finder.telemetry import PREFERRED_KERNEL_EXACT_MATCH, Telemetry
from kernel_finder.types import PythonEnvironment, get_interpreter_hash

from conftest import make_live, make_local, make_remote_spec

URI = "file:///home/user/work/notebook.ipynb"
PYTHON_METADATA = {"language_info": {"name": "python"}}


class TestRankKernels:
    """Tests for rank_kernels ordering."""

    @pytest.mark.asyncio
    async def test_best_candidate_is_last(self):
        """Test the matching kernelspec ranks last."""
        kernels = [make_local("julia", "julia"), make_local("python3"), make_local("ir", "R")]
        metadata = {"kernelspec": {"name": "python3", "display_name": "python3"}, **PYTHON_METADATA}

        ranked = await KernelRankingHelper().rank_kernels(URI, kernels, metadata, None)

        assert ranked[-1].kernel_spec.name == "python3"

    @pytest.mark.asyncio
    async def test_ranking_is_idempotent(self):
        """Test ranking the same pool twice gives the same order."""
        kernels = [make_local("b"), make_local("a"), make_live("k1"), make_remote_spec("c")]
        ranking = KernelRankingHelper()

        first = await ranking.rank_kernels(URI, kernels, PYTHON_METADATA, None)
        second = await ranking.rank_kernels(URI, list(reversed(kernels)), PYTHON_METADATA, None)

        assert [kernel.id for kernel in first] == [kernel.id for kernel in second]

    @pytest.mark.asyncio
    async def test_ties_prefer_alphabetical_first(self):
        """Test equal scores put the alphabetically first name last."""
        kernels = [make_local("alpha"), make_local("beta")]
        ranked = await KernelRankingHelper().rank_kernels(URI, kernels, PYTHON_METADATA, None)
        assert [kernel.kernel_spec.name for kernel in ranked] == ["beta", "alpha"]

    @pytest.mark.asyncio
    async def test_same_session_wins(self):
        """Test a live kernel already attached to this notebook ranks best."""
        kernels = [make_local("python3"), make_live("k1", path="work/notebook.ipynb"), make_live("k2", path="other.ipynb")]
        ranked = await KernelRankingHelper().rank_kernels(URI, kernels, PYTHON_METADATA, None)
        assert ranked[-1].id == "k1"

    @pytest.mark.asyncio
    async def test_interpreter_hash_wins(self):
        """Test the interpreter pinned in metadata wins over a name match."""
        env = PythonEnvironment(id="env-a", path="/envs/a/bin/python")
        pinned = make_local("python3-a", interpreter=env)
        named = make_local("python3")
        metadata = {"interpreter": {"hash": get_interpreter_hash(env)}, "kernelspec": {"name": "python3"}}

        ranked = await KernelRankingHelper().rank_kernels(URI, [pinned, named], metadata, None)

        assert ranked[-1] is pinned

    @pytest.mark.asyncio
    async def test_server_filter(self):
        """Test server_id restricts the pool to that server."""
        remote = make_remote_spec()
        kernels = [make_local(), remote]
        ranked = await KernelRankingHelper().rank_kernels(URI, kernels, None, None, server_id=remote.server_id)
        assert ranked == [remote]

    @pytest.mark.asyncio
    async def test_cancelled(self):
        """Test a cancelled token yields []."""
        source = CancellationTokenSource()
        source.cancel()
        ranked = await KernelRankingHelper().rank_kernels(URI, [make_local()], None, None, source.token)
        assert ranked == []


class TestFindPreferred:
    """Tests for the preferred-kernel policy."""

    @pytest.mark.asyncio
    async def test_only_connection(self):
        """Test a single candidate is always preferred."""
        kernel = make_local("whatever", "scala")
        match = await KernelRankingHelper().find_preferred(URI, [kernel], PYTHON_METADATA, None)
        assert match.preferred is kernel
        assert match.reason.only_connection
        assert match.reason.flags == PreferredKernelExactMatchReason.OnlyKernel

    @pytest.mark.asyncio
    async def test_non_python_language_match(self):
        """Test a lone R kernel is preferred for an R notebook."""
        r_kernel = make_local("ir", "R")
        kernels = [make_local("python3"), r_kernel, make_local("other-python")]
        match = await KernelRankingHelper().find_preferred(URI, kernels, {"language_info": {"name": "R"}}, None)

        assert match.preferred is r_kernel
        assert match.reason.is_non_python_language_match
        assert not match.reason.only_connection

    @pytest.mark.asyncio
    async def test_python_needs_more_than_language(self):
        """Test two python kernels without an exact match prefer nothing."""
        kernels = [make_local("python3"), make_local("python3-venv")]
        match = await KernelRankingHelper().find_preferred(URI, kernels, PYTHON_METADATA, None)

        assert match.preferred is None
        assert len(match.ranked) == 2
        assert match.reason.flags == PreferredKernelExactMatchReason.NoMatch

    @pytest.mark.asyncio
    async def test_exact_match_by_name(self):
        """Test a kernelspec name match is preferred."""
        target = make_local("python3-venv")
        kernels = [make_local("python3"), target]
        metadata = {"kernelspec": {"name": "python3-venv"}, **PYTHON_METADATA}

        match = await KernelRankingHelper().find_preferred(URI, kernels, metadata, None)

        assert match.preferred is target
        assert match.reason.is_exact_match

    @pytest.mark.asyncio
    async def test_preferred_interpreter(self):
        """Test the active interpreter's kernel is preferred."""
        env = PythonEnvironment(id="env-a", path="/envs/a/bin/python")
        target = make_local("python3-a", interpreter=env)
        kernels = [make_local("python3"), target]

        match = await KernelRankingHelper().find_preferred(URI, kernels, PYTHON_METADATA, env)

        assert match.preferred is target
        assert match.reason.is_preferred_interpreter

    @pytest.mark.asyncio
    async def test_custom_exact_match_policy(self):
        """Test an async exact-match policy is awaited."""
        async def policy(scope, kernel, metadata):
            return kernel.kernel_spec.name == "python3"

        kernels = [make_local("python3"), make_local("python3-venv")]
        match = await KernelRankingHelper(exact_match_policy=policy).find_preferred(URI, kernels, {}, None)

        assert match.preferred.kernel_spec.name == "python3"
        assert match.reason.is_exact_match

    @pytest.mark.asyncio
    async def test_telemetry_sent(self):
        """Test the match reason is reported."""
        telemetry = Telemetry()
        await KernelRankingHelper(telemetry=telemetry).find_preferred(URI, [make_local()], None, None)

        events = telemetry.events_named(PREFERRED_KERNEL_EXACT_MATCH)
        assert len(events) == 1
        assert events[0].measures["matched_reason"] == int(PreferredKernelExactMatchReason.OnlyKernel)

    @pytest.mark.asyncio
    async def test_empty_pool(self):
        """Test an empty pool yields no preferred kernel and no telemetry."""
        telemetry = Telemetry()
        match = await KernelRankingHelper(telemetry=telemetry).find_preferred(URI, [], None, None)
        assert match.preferred is None
        assert telemetry.events == []


class TestHelpers:
    """Tests for matching helpers."""

    def test_matching_interpreter_by_path(self):
        """Test interpreter matching falls back to the path."""
        env = PythonEnvironment(id="a", path="/envs/a/bin/python")
        kernel = make_local(interpreter=PythonEnvironment(id="b", path="/envs/a/bin/python"))
        assert find_kernel_spec_matching_interpreter(env, [kernel]) is kernel
        assert find_kernel_spec_matching_interpreter(None, [kernel]) is None

    def test_reason_flags_combine(self):
        """Test several reasons combine into one flag value."""
        reason = PreferredMatchReason(only_connection=True, is_exact_match=True)
        assert int(reason.flags) == 5
        assert reason.matched
        assert not PreferredMatchReason().matched
