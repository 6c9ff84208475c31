"""Shared fixtures."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional

import pytest

from canhook.capture.types import MailboxItem
from canhook.core.frame import CANFrame, MessageId
from canhook.replay.scheduler import Step


@dataclass
class FakeCall:
    delay: float
    step: Step
    cancelled: bool = False
    ran: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Records scheduled steps; tests run them explicitly."""

    def __init__(self) -> None:
        self.calls: list[FakeCall] = []

    def call_later(self, delay: float, step: Step) -> FakeCall:
        call = FakeCall(delay, step)
        self.calls.append(call)
        return call

    @property
    def pending(self) -> list[FakeCall]:
        return [c for c in self.calls if not c.cancelled and not c.ran]

    async def run_next(self) -> FakeCall:
        call = self.pending[0]
        call.ran = True
        await call.step()
        return call


class RecordingInvoke:
    """An invoker that records requests and mirrors their tags back.

    Tunnelled requests are answered with equally nested responses, so tag
    checks pass at every layer. The innermost response carries ``result``.
    """

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self.result: Any = None
        self.error: Optional[Exception] = None

    def respond(self, request: dict[str, Any]) -> dict[str, Any]:
        for value in (request.get("data") or {}).values():
            if isinstance(value, dict) and "method" in value:
                return {"method": request["method"], "data": self.respond(value)}
        return {"method": request["method"], "data": self.result}

    async def __call__(self, request: dict[str, Any]) -> dict[str, Any]:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.respond(request)


class FakeCaptureSource:
    """In-memory capture source with scriptable failures."""

    def __init__(self) -> None:
        self.items: list[MailboxItem] = []
        self.enabled = False
        self.filters: list[Any] = []
        self.clears = 0
        self.reads = 0
        self.clear_error: Optional[Exception] = None
        self.read_errors: list[Exception] = []
        self.gate: Optional[asyncio.Event] = None

    def push(self, count: int) -> None:
        start = self.items[-1].seq + 1 if self.items else 1
        for seq in range(start, start + count):
            self.items.append(make_item(seq))

    async def set_log_enabled(self, enabled: bool) -> None:
        self.enabled = enabled

    async def clear(self) -> None:
        if self.clear_error is not None:
            raise self.clear_error
        self.clears += 1
        self.items.clear()

    async def read_after(self, seq: int) -> list[MailboxItem]:
        self.reads += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.read_errors:
            raise self.read_errors.pop(0)
        return [item for item in self.items if item.seq > seq]

    async def set_filters(self, filters: Any) -> None:
        self.filters = list(filters)


def make_item(seq: int, timestamp: Optional[int] = None, data: bytes = b"\x01\x02") -> MailboxItem:
    return MailboxItem(
        seq=seq,
        raw=CANFrame(id=MessageId(2, 5, 1, 3, seq % 64), data=data, timestamp=seq * 10 if timestamp is None else timestamp),
    )


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def invoke() -> RecordingInvoke:
    return RecordingInvoke()


@pytest.fixture
def source() -> FakeCaptureSource:
    return FakeCaptureSource()


@pytest.fixture
def item_factory() -> Callable[..., MailboxItem]:
    return make_item


@pytest.fixture
def errors() -> list[Exception]:
    """Collects everything sent to an error sink."""
    return []
