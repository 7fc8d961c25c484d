"""Per-caller generation tokens implementing "latest request wins".

A caller (identified by a session id, e.g. one browser tab) has at most one
current generation.  Beginning a new one cancels the previous token, which
cancels every task attached to it, whether it is waiting on the provider or
sleeping between retries.  Results produced under a token that is no longer
current must not be returned to the caller.

All state lives on the event loop thread, so no locking is required.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class GenerationToken:
    """Handle for one in-flight generation of a session."""

    session_id: str
    serial: int
    _cancelled: bool = False
    _tasks: set[asyncio.Task] = field(default_factory=set)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def attach(self, *tasks: asyncio.Task) -> None:
        """Tie tasks to this token so cancelling the token cancels them."""
        self._tasks.update(tasks)
        if self._cancelled:
            self._cancel_tasks()

    def cancel(self) -> None:
        self._cancelled = True
        self._cancel_tasks()

    def _cancel_tasks(self) -> None:
        for task in self._tasks:
            if not task.done():
                task.cancel()


class GenerationSessions:
    """Registry of the current generation token per session."""

    def __init__(self) -> None:
        self._current: dict[str, GenerationToken] = {}
        self._serials = itertools.count(1)

    def begin(self, session_id: str) -> GenerationToken:
        """Start a new generation for ``session_id``, superseding any previous one."""
        previous = self._current.get(session_id)
        if previous is not None:
            logger.info(
                "Session %s: generation #%d superseded.", session_id, previous.serial
            )
            previous.cancel()

        token = GenerationToken(session_id=session_id, serial=next(self._serials))
        self._current[session_id] = token
        return token

    def is_current(self, token: GenerationToken) -> bool:
        return self._current.get(token.session_id) is token and not token.cancelled

    def release(self, token: GenerationToken) -> None:
        """Forget ``token`` once its request has completed."""
        if self._current.get(token.session_id) is token:
            del self._current[token.session_id]

    def __len__(self) -> int:
        return len(self._current)
