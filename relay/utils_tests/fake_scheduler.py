from typing import List, Optional

from relay.utils.scheduler import Callback, ScheduledHandle, Scheduler


class FakeHandle(ScheduledHandle):
    def __init__(
        self, due_at: float, callback: Callback, period: Optional[float], seq: int
    ) -> None:
        super().__init__()
        self.due_at = due_at
        self.callback = callback
        self.period = period
        self.seq = seq
        self.fired = False

    @property
    def active(self) -> bool:
        return not self.cancelled and not self.fired


class FakeScheduler(Scheduler):
    """Scheduler driven by a virtual clock; callbacks run only inside ``advance``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.handles: List[FakeHandle] = []

    def _add(self, delay: float, callback: Callback, period: Optional[float]) -> FakeHandle:
        handle = FakeHandle(self.now + delay, callback, period, len(self.handles))
        self.handles.append(handle)
        return handle

    def call_later(self, delay: float, callback: Callback) -> ScheduledHandle:
        return self._add(delay, callback, None)

    def call_every(self, period: float, callback: Callback) -> ScheduledHandle:
        return self._add(period, callback, period)

    @property
    def pending(self) -> List[FakeHandle]:
        return [h for h in self.handles if h.active]

    @property
    def pending_one_shots(self) -> List[FakeHandle]:
        return [h for h in self.pending if h.period is None]

    @property
    def pending_periodic(self) -> List[FakeHandle]:
        return [h for h in self.pending if h.period is not None]

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, running every callback that falls due on the way."""
        target = self.now + seconds
        while True:
            due = [h for h in self.pending if h.due_at <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.due_at, h.seq))
            self.now = handle.due_at
            if handle.period is None:
                handle.fired = True
            else:
                handle.due_at += handle.period
            await handle.callback()
        self.now = target
