"""Size-gate confirmation for large files."""

from __future__ import annotations

import inspect
from enum import Enum
from typing import Awaitable, Callable, Protocol, Union


class GateDecision(str, Enum):
    """Answer to a large-file confirmation.

    Attributes
    ----------
    PROCEED
        Select the file anyway.
    CANCEL
        Leave the file unselected.
    """

    PROCEED = "proceed"
    CANCEL = "cancel"


class SizeGate(Protocol):
    """Asks whether a file above the size threshold may be selected."""

    async def confirm_large_file(self, path: str, size_kb: float, threshold_kb: float) -> GateDecision: ...


class AutoGate:
    """Gate that always returns the same decision."""

    def __init__(self, decision: GateDecision = GateDecision.PROCEED) -> None:
        self.decision = decision

    async def confirm_large_file(self, path: str, size_kb: float, threshold_kb: float) -> GateDecision:
        return self.decision


GateCallback = Callable[[str, float, float], Union[GateDecision, bool, Awaitable[GateDecision], Awaitable[bool]]]


class CallbackGate:
    """Adapt a plain (sync or async) callable into a SizeGate.

    The callable receives ``(path, size_kb, threshold_kb)`` and returns a
    GateDecision or a bool, where True means proceed.
    """

    def __init__(self, callback: GateCallback) -> None:
        self._callback = callback

    async def confirm_large_file(self, path: str, size_kb: float, threshold_kb: float) -> GateDecision:
        answer = self._callback(path, size_kb, threshold_kb)
        if inspect.isawaitable(answer):
            answer = await answer
        if isinstance(answer, GateDecision):
            return answer
        return GateDecision.PROCEED if answer else GateDecision.CANCEL
