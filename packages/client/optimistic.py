"""Optimistic mutation with rollback.

``snapshot -> apply -> issue -> commit | revert``: local state is changed before the
request goes out, the server's answer replaces it on success, and the snapshot is
restored on failure. There is no retry and no version check; the last response to land
wins.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from packages.client.http import error_message

logger = logging.getLogger(__name__)

S = TypeVar("S")
T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class CommandResult(Generic[T]):
    ok: bool
    value: T | None = None
    error: str | None = None


@dataclass(slots=True)
class OptimisticCommand(Generic[S, T]):
    name: str
    snapshot: Callable[[], S]
    apply: Callable[[], None]
    issue: Callable[[], T]
    commit: Callable[[T], None]
    revert: Callable[[S], None]
    on_error: Callable[[str], None] | None = None

    def run(self) -> CommandResult[T]:
        saved = self.snapshot()
        self.apply()
        try:
            value = self.issue()
            self.commit(value)
        except Exception as e:
            self.revert(saved)
            message = error_message(e)
            logger.warning("%s failed, rolled back: %s", self.name, message)
            if self.on_error is not None:
                self.on_error(message)
            return CommandResult(ok=False, error=message)
        return CommandResult(ok=True, value=value)
