"""Append-only log of a day's raw actions."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Iterator, Optional

from .errors import NothingToRetract, OutOfOrderAction
from .models import Action, action_from_dict, format_timestamp


class ActionView:
    """Lazy, restartable view over the actions of a log.

    Every iteration walks the log afresh, so actions appended after the view
    was created are included on the next pass.
    """

    def __init__(self, log: ActionLog, since: Optional[datetime] = None):
        self._log = log
        self._since = since

    def __iter__(self) -> Iterator[Action]:
        for action in self._log._actions:
            if self._since is None or action.at >= self._since:
                yield action

    def __len__(self) -> int:
        return sum(1 for _ in self)


class ActionLog:
    """Actions for one day, in the order they were received.

    The only way to remove an action is :meth:`retract_last`, which backs the
    user-facing undo.
    """

    def __init__(self, actions: Optional[Iterable[Action]] = None):
        self._actions: list[Action] = []
        for action in actions or ():
            self.append(action)

    def __len__(self) -> int:
        return len(self._actions)

    def __iter__(self) -> Iterator[Action]:
        return iter(list(self._actions))

    def __bool__(self) -> bool:
        return bool(self._actions)

    @property
    def last_instant(self) -> Optional[datetime]:
        """Timestamp of the latest non-fixed action, if any."""
        for action in reversed(self._actions):
            if not action.is_fixed:
                return action.at
        return None

    def append(self, action: Action) -> None:
        """Append an action.

        Fixed bookings are manual corrections and may be inserted out of
        order; the normalizer sorts them into place.

        Raises:
            OutOfOrderAction: If a stack action is older than the last one.
        """
        last = self.last_instant
        if not action.is_fixed and last is not None and action.at < last:
            raise OutOfOrderAction(
                f"Action {action} is older than the last recorded action at {format_timestamp(last)}"
            )
        self._actions.append(action)

    def actions_since(self, instant: Optional[datetime] = None) -> ActionView:
        """Return a restartable view of actions at or after ``instant``."""
        return ActionView(self, instant)

    def retract_last(self) -> Action:
        """Remove and return the most recent action.

        Raises:
            NothingToRetract: If the log is empty.
        """
        if not self._actions:
            raise NothingToRetract("No action recorded for the day")
        return self._actions.pop()

    def copy(self) -> ActionLog:
        clone = ActionLog()
        clone._actions = list(self._actions)
        return clone

    def to_list(self) -> list[dict[str, Any]]:
        return [a.to_dict() for a in self._actions]

    @classmethod
    def from_list(cls, data: Iterable[dict[str, Any]]) -> ActionLog:
        """Rebuild a log from stored dictionaries, keeping their stored order."""
        log = cls()
        log._actions = [action_from_dict(item) for item in data]
        return log
