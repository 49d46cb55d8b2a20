"""Debounced, cancellable token recount over the checked files.

Each call to :meth:`RecomputeScheduler.invalidate` bumps a version counter and
re-arms a single timer. When the timer fires, a run starts with a
:class:`RecomputeToken` bound to the version of that moment; the run gives up
silently as soon as its token goes stale, so only the newest run ever
publishes a final result.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from ctxtower.fs import Filesystem
from ctxtower.tokens import Tokenizer

log = logging.getLogger(__name__)

DEFAULT_DELAY = 0.3
DEFAULT_BATCH_SIZE = 50

CheckedPathsSource = Callable[[], Awaitable[list[str]]]
ResultCallback = Callable[["AggregateResult"], None]
MissingCallback = Callable[[str], None]


@dataclass(frozen=True)
class AggregateResult:
    """Published token aggregate.

    Attributes
    ----------
    count
        Sum of token counts over the checked files.
    in_progress
        True while a recount is running; ``count`` then holds the previous value.
    """

    count: int
    in_progress: bool


class RecomputeToken:
    """Cancellation token for one run, bound to the version it started with."""

    def __init__(self, scheduler: RecomputeScheduler, version: int) -> None:
        self._scheduler = scheduler
        self.version = version

    @property
    def is_stale(self) -> bool:
        return self.version != self._scheduler.version


class RecomputeScheduler:
    """Owns the token aggregate and keeps it in step with the selection.

    Parameters
    ----------
    source
        Async callable returning the checked file paths.
    fs
        Filesystem accessor used to read file contents.
    tokenizer
        Counts tokens in each file.
    delay
        Debounce delay in seconds.
    batch_size
        Files counted between cancellation checks.
    on_missing
        Called with the path of a file that vanished during a run.
    """

    def __init__(
        self,
        source: CheckedPathsSource,
        *,
        fs: Filesystem,
        tokenizer: Tokenizer,
        delay: float = DEFAULT_DELAY,
        batch_size: int = DEFAULT_BATCH_SIZE,
        on_missing: MissingCallback | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._source = source
        self._fs = fs
        self._tokenizer = tokenizer
        self._delay = delay
        self._batch_size = batch_size
        self._on_missing = on_missing
        self._version = 0
        self._result = AggregateResult(count=0, in_progress=False)
        self._timer: asyncio.TimerHandle | None = None
        self._runs: set[asyncio.Task[None]] = set()
        self._subscribers: list[ResultCallback] = []
        self.runs_started = 0

    @property
    def version(self) -> int:
        return self._version

    @property
    def result(self) -> AggregateResult:
        return self._result

    def subscribe(self, callback: ResultCallback) -> Callable[[], None]:
        """Register a result callback; returns a function that removes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def invalidate(self, delay: float | None = None) -> None:
        """Supersede any pending or running recount and schedule a new one.

        Must be called from within a running event loop.
        """
        loop = asyncio.get_running_loop()
        self._version += 1
        self._cancel_timer()
        self._timer = loop.call_later(self._delay if delay is None else delay, self._start_run)
        log.debug("Recount scheduled (version %d)", self._version)

    def clear_all(self) -> None:
        """Supersede any recount and publish an empty aggregate immediately."""
        self._version += 1
        self._cancel_timer()
        self._publish(AggregateResult(count=0, in_progress=False))
        log.debug("Token count reset to 0 (version %d)", self._version)

    def close(self) -> None:
        """Cancel the pending timer and supersede any running recount."""
        self._version += 1
        self._cancel_timer()

    async def wait_idle(self) -> None:
        """Wait until no timer is pending and no run is in flight."""
        while True:
            if self._timer is not None:
                await asyncio.sleep(self._delay)
                continue
            pending = [t for t in self._runs if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def _start_run(self) -> None:
        self._timer = None
        token = RecomputeToken(self, self._version)
        self.runs_started += 1
        task = asyncio.get_running_loop().create_task(self._run(token))
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)

    async def _run(self, token: RecomputeToken) -> None:
        previous = self._result.count
        try:
            paths = await self._source()
            if token.is_stale:
                return
            if not paths:
                self._publish(AggregateResult(count=0, in_progress=False))
                log.debug("Token count reset to 0 (version %d, no files selected)", token.version)
                return

            log.debug("Token count started (version %d) for %d files", token.version, len(paths))
            self._publish(AggregateResult(count=previous, in_progress=True))
            total = await count_checked_tokens(
                paths,
                token,
                fs=self._fs,
                tokenizer=self._tokenizer,
                batch_size=self._batch_size,
                on_missing=self._on_missing,
            )
            if total is None or token.is_stale:
                log.debug("Token count superseded (version %d)", token.version)
                return
            self._publish(AggregateResult(count=total, in_progress=False))
            log.info("Token count finished (version %d): %d tokens", token.version, total)
        except Exception:
            log.exception("Unexpected error during token count (version %d)", token.version)
            if not token.is_stale:
                self._publish(AggregateResult(count=previous, in_progress=False))

    def _publish(self, result: AggregateResult) -> None:
        self._result = result
        for callback in list(self._subscribers):
            callback(result)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


async def count_checked_tokens(
    paths: list[str],
    token: RecomputeToken,
    *,
    fs: Filesystem,
    tokenizer: Tokenizer,
    batch_size: int = DEFAULT_BATCH_SIZE,
    on_missing: MissingCallback | None = None,
) -> int | None:
    """Sum token counts over ``paths``, stopping once ``token`` goes stale.

    Files that cannot be read or tokenized are skipped. Files that no
    longer exist are also reported to ``on_missing``.

    Parameters
    ----------
    paths
        Files to count, in order.
    token
        Cancellation token checked before the loop and after every batch.
    fs
        Filesystem accessor.
    tokenizer
        Token counter.
    batch_size
        Files per cancellation check.
    on_missing
        Called with each path found to be missing.

    Returns
    -------
    int | None
        The total, or None if the token went stale.
    """
    if token.is_stale:
        return None
    total = 0
    for index, path in enumerate(paths, start=1):
        try:
            text = await fs.read_file(path)
            total += tokenizer.count(text)
        except FileNotFoundError:
            log.warning("File not found during token count: %s", path)
            if on_missing is not None:
                on_missing(path)
        except Exception as e:
            log.warning("Skipping %s during token count: %s", path, e)
        if index % batch_size == 0:
            await asyncio.sleep(0)
            if token.is_stale:
                return None
    return total
