from __future__ import annotations

import logging
import threading
from datetime import datetime, tzinfo
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from croniter import croniter

from cron_jenkins.errors import ValidationError


logger = logging.getLogger(__name__)


def to_croniter_expression(expression: str) -> str:
    """Normalise a 5-field or seconds-first 6-field expression for croniter.

    croniter reads a sixth field as seconds at the end, so a leading
    seconds field is moved there.
    """

    fields = (expression or "").split()
    if len(fields) == 5:
        return " ".join(fields)
    if len(fields) == 6:
        return " ".join(fields[1:] + fields[:1])
    raise ValidationError(
        f"Cron expression must have 5 fields (or 6 with leading seconds), got {len(fields)}: {expression!r}"
    )


def validate_cron(expression: Optional[str]) -> str:
    """Return the trimmed expression or raise ValidationError."""

    if not expression or not str(expression).strip():
        raise ValidationError("A recurring job needs a cron expression")
    cleaned = " ".join(str(expression).split())
    normalized = to_croniter_expression(cleaned)
    if not croniter.is_valid(normalized):
        raise ValidationError(f"Invalid cron expression: {expression!r}")
    return cleaned


def resolve_timezone(name: Optional[str]) -> Optional[tzinfo]:
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except Exception as exc:  # noqa: BLE001
        raise ValidationError(f"Unknown time zone: {name!r}") from exc


def now_in(tz: Optional[tzinfo]) -> datetime:
    if tz is None:
        return datetime.now().astimezone()
    return datetime.now(tz)


def next_fire_time(expression: str, after: datetime) -> datetime:
    return croniter(to_croniter_expression(expression), after).get_next(datetime)


class CronTrigger:
    """Invoke ``callback`` on every match of a cron expression.

    Runs on its own daemon thread; ``cancel`` wakes the thread and stops any
    further firing. The callback runs on the trigger thread and is expected
    to hand work off quickly.
    """

    def __init__(
        self,
        expression: str,
        callback: Callable[[], None],
        *,
        tz: Optional[tzinfo] = None,
        name: str = "cron-trigger",
    ) -> None:
        self.expression = validate_cron(expression)
        self._callback = callback
        self._tz = tz
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self.next_fire_at: Optional[datetime] = None
        self.fire_count = 0

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._stop.set()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        last: Optional[datetime] = None
        while not self._stop.is_set():
            now = now_in(self._tz)
            # Never compute from before the previous slot, so an early
            # wake-up cannot fire the same slot twice.
            base = max(now, last) if last is not None else now
            nxt = next_fire_time(self.expression, base)
            self.next_fire_at = nxt
            if self._stop.wait(timeout=max(0.0, (nxt - now).total_seconds())):
                break
            last = nxt
            self.fire_count += 1
            try:
                self._callback()
            except Exception:  # noqa: BLE001
                logger.exception("Cron trigger callback failed (%s)", self.expression)
