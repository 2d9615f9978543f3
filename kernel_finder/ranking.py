"""
Kernel Ranking: order candidates for a notebook and pick the preferred one.

Ranking output is ordered worst-to-best: the best candidate is the LAST
element. Callers index from the end.

Scoring is deterministic, so ranking the same pool twice gives the same
order. Ties are broken by kind (live kernels rank below specs), then by
display name and id (alphabetically first wins).
"""

import inspect
import logging
import os
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

from kernel_finder.cancellation import CancellationToken, is_cancelled
from kernel_finder.telemetry import PREFERRED_KERNEL_EXACT_MATCH, Telemetry
from kernel_finder.types import (
    PYTHON_LANGUAGE,
    ConnectionKind,
    KernelConnection,
    PythonEnvironment,
    get_interpreter_hash,
    get_language_in_notebook_metadata,
)

logger = logging.getLogger(__name__)

ExactMatchPolicy = Callable[[Any, KernelConnection, Optional[Dict[str, Any]]], Any]

# Score weights
SCORE_SAME_SESSION = 200
SCORE_INTERPRETER_HASH = 100
SCORE_SPEC_NAME = 40
SCORE_PREFERRED_INTERPRETER = 30
SCORE_LANGUAGE = 20
SCORE_DISPLAY_NAME = 10
SCORE_DEFAULT_PYTHON = 5

_KIND_ORDER = {
    ConnectionKind.LIVE_REMOTE: 0,
    ConnectionKind.REMOTE_SPEC: 1,
    ConnectionKind.LOCAL_SPEC: 1,
}


class PreferredKernelExactMatchReason(IntFlag):
    """Telemetry values for why a preferred kernel was accepted."""
    NoMatch = 0
    OnlyKernel = 1
    WasPreferredInterpreter = 2
    IsExactMatch = 4
    IsNonPythonKernelLanguageMatch = 8


@dataclass(frozen=True)
class PreferredMatchReason:
    """The four conditions evaluated against the top-ranked candidate."""
    only_connection: bool = False
    is_preferred_interpreter: bool = False
    is_exact_match: bool = False
    is_non_python_language_match: bool = False

    @property
    def matched(self) -> bool:
        return (
            self.only_connection
            or self.is_preferred_interpreter
            or self.is_exact_match
            or self.is_non_python_language_match
        )

    @property
    def flags(self) -> PreferredKernelExactMatchReason:
        reason = PreferredKernelExactMatchReason.NoMatch
        if self.only_connection:
            reason |= PreferredKernelExactMatchReason.OnlyKernel
        if self.is_preferred_interpreter:
            reason |= PreferredKernelExactMatchReason.WasPreferredInterpreter
        if self.is_exact_match:
            reason |= PreferredKernelExactMatchReason.IsExactMatch
        if self.is_non_python_language_match:
            reason |= PreferredKernelExactMatchReason.IsNonPythonKernelLanguageMatch
        return reason

    def to_dict(self) -> Dict[str, Any]:
        return {
            "only_connection": self.only_connection,
            "is_preferred_interpreter": self.is_preferred_interpreter,
            "is_exact_match": self.is_exact_match,
            "is_non_python_language_match": self.is_non_python_language_match,
            "flags": int(self.flags),
        }


@dataclass
class PreferredMatch:
    """Result of a preferred-kernel search."""
    ranked: List[KernelConnection] = field(default_factory=list)
    preferred: Optional[KernelConnection] = None
    reason: Optional[PreferredMatchReason] = None


def _spec_name(connection: KernelConnection) -> str:
    kernel_spec = getattr(connection, "kernel_spec", None)
    if kernel_spec is not None:
        return kernel_spec.name
    kernel_model = getattr(connection, "kernel_model", None)
    return kernel_model.name if kernel_model is not None else ""


def _same_path(left: str, right: str) -> bool:
    return os.path.normcase(os.path.normpath(left)) == os.path.normcase(os.path.normpath(right))


def find_kernel_spec_matching_interpreter(
    interpreter: Optional[PythonEnvironment],
    kernels: List[KernelConnection],
) -> Optional[KernelConnection]:
    """First candidate bound to the given interpreter, if any."""
    if interpreter is None:
        return None
    for kernel in kernels:
        candidate = kernel.interpreter
        if candidate is None:
            continue
        if candidate.id and candidate.id == interpreter.id:
            return kernel
        if candidate.path and interpreter.path and _same_path(candidate.path, interpreter.path):
            return kernel
    return None


def default_exact_match(
    document_scope: Any,
    connection: KernelConnection,
    metadata: Optional[Dict[str, Any]],
) -> bool:
    """
    Exact match on interpreter hash, or on kernelspec name (and display name when declared).
    """
    if not metadata:
        return False
    interpreter_hash = (metadata.get("interpreter") or {}).get("hash")
    if interpreter_hash and interpreter_hash == get_interpreter_hash(connection.interpreter):
        return True
    kernelspec = metadata.get("kernelspec") or {}
    name = kernelspec.get("name")
    if not name or name != _spec_name(connection):
        return False
    display_name = kernelspec.get("display_name")
    return not display_name or display_name == connection.display_name


class KernelRankingHelper:
    """
    Scores and orders candidate connections against a notebook.

    Example:
        ranking = KernelRankingHelper()
        ranked = await ranking.rank_kernels(uri, kernels, metadata, None, token)
        best = ranked[-1]
    """

    def __init__(
        self,
        exact_match_policy: Optional[ExactMatchPolicy] = None,
        telemetry: Optional[Telemetry] = None,
    ):
        self.exact_match_policy = exact_match_policy or default_exact_match
        self.telemetry = telemetry or Telemetry()

    async def rank_kernels(
        self,
        document_scope: Any,
        kernels: List[KernelConnection],
        metadata: Optional[Dict[str, Any]],
        preferred_interpreter: Optional[PythonEnvironment],
        cancel_token: Optional[CancellationToken] = None,
        server_id: Optional[str] = None,
    ) -> List[KernelConnection]:
        """
        Order candidates worst-to-best.

        Args:
            document_scope: Document uri (or document) being ranked for
            kernels: Candidate pool
            metadata: Notebook metadata (kernelspec, language_info, interpreter)
            preferred_interpreter: Active interpreter hint, if any
            cancel_token: Returns [] when cancelled
            server_id: Restrict ranking to candidates of one server

        Returns:
            Ranked candidates, best last
        """
        if is_cancelled(cancel_token):
            return []

        pool = list(kernels)
        if server_id:
            pool = [kernel for kernel in pool if getattr(kernel, "server_id", None) == server_id]

        scores = {id(kernel): self.score(document_scope, kernel, metadata, preferred_interpreter) for kernel in pool}

        # Two stable passes: alphabetical tie-break first, then score
        pool.sort(key=lambda k: (k.display_name.lower(), k.id), reverse=True)
        pool.sort(key=lambda k: (scores[id(k)], _KIND_ORDER.get(k.kind, 0)))

        if is_cancelled(cancel_token):
            return []
        return pool

    def score(
        self,
        document_scope: Any,
        kernel: KernelConnection,
        metadata: Optional[Dict[str, Any]],
        preferred_interpreter: Optional[PythonEnvironment],
    ) -> int:
        metadata = metadata or {}
        kernelspec = metadata.get("kernelspec") or {}
        language = get_language_in_notebook_metadata(metadata)
        score = 0

        if kernel.kind == ConnectionKind.LIVE_REMOTE and self._is_same_session(document_scope, kernel):
            score += SCORE_SAME_SESSION

        interpreter_hash = (metadata.get("interpreter") or {}).get("hash")
        if interpreter_hash and interpreter_hash == get_interpreter_hash(kernel.interpreter):
            score += SCORE_INTERPRETER_HASH

        if kernelspec.get("name") and kernelspec.get("name") == _spec_name(kernel):
            score += SCORE_SPEC_NAME
            if kernelspec.get("display_name") and kernelspec.get("display_name") == kernel.display_name:
                score += SCORE_DISPLAY_NAME

        if language and kernel.language == language:
            score += SCORE_LANGUAGE
        elif not language and kernel.language == PYTHON_LANGUAGE:
            score += SCORE_DEFAULT_PYTHON

        if (not language or language == PYTHON_LANGUAGE) and find_kernel_spec_matching_interpreter(
            preferred_interpreter, [kernel]
        ):
            score += SCORE_PREFERRED_INTERPRETER

        return score

    @staticmethod
    def _is_same_session(document_scope: Any, kernel: KernelConnection) -> bool:
        uri = getattr(document_scope, "uri", document_scope)
        session_path = (kernel.kernel_model.session or {}).get("path") if hasattr(kernel, "kernel_model") else None
        if not isinstance(uri, str) or not session_path:
            return False
        return urlparse(uri).path.endswith(session_path)

    async def is_exact_match(
        self,
        document_scope: Any,
        kernel: KernelConnection,
        metadata: Optional[Dict[str, Any]],
    ) -> bool:
        result = self.exact_match_policy(document_scope, kernel, metadata)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    async def find_preferred(
        self,
        document_scope: Any,
        kernels: List[KernelConnection],
        metadata: Optional[Dict[str, Any]],
        preferred_interpreter: Optional[PythonEnvironment],
        cancel_token: Optional[CancellationToken] = None,
        server_id: Optional[str] = None,
    ) -> PreferredMatch:
        """
        Rank and decide whether the top candidate is good enough to prefer.

        The top candidate is preferred when it is the only one, is the
        preferred interpreter, is an exact match, or (for non-Python
        notebooks) matches the notebook language.
        """
        ranked = await self.rank_kernels(
            document_scope, kernels, metadata, preferred_interpreter, cancel_token, server_id
        )
        if is_cancelled(cancel_token):
            return PreferredMatch()
        if not ranked:
            return PreferredMatch(ranked=[])

        top = ranked[-1]
        only_connection = len(ranked) == 1
        is_preferred_interpreter = find_kernel_spec_matching_interpreter(preferred_interpreter, [top]) is not None

        is_exact_match = await self.is_exact_match(document_scope, top, metadata)
        if is_cancelled(cancel_token):
            return PreferredMatch()

        # Non-exact matches are fine for non-Python kernels; Python needs more than a language match
        language = get_language_in_notebook_metadata(metadata)
        is_non_python_language_match = bool(language) and language != PYTHON_LANGUAGE and top.language == language

        reason = PreferredMatchReason(
            only_connection=only_connection,
            is_preferred_interpreter=is_preferred_interpreter,
            is_exact_match=is_exact_match,
            is_non_python_language_match=is_non_python_language_match,
        )
        preferred = top if reason.matched else None
        if preferred is not None:
            logger.info(
                f"Preferred kernel {top.id} is exact match or top match for non python kernels "
                f"({only_connection}, {is_preferred_interpreter}, {is_exact_match}, {is_non_python_language_match})"
            )

        self.telemetry.send_event(PREFERRED_KERNEL_EXACT_MATCH, measures={"matched_reason": int(reason.flags)})
        return PreferredMatch(ranked=ranked, preferred=preferred, reason=reason)
