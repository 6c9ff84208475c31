"""Method-tagged request/response envelopes over one opaque call primitive."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional

from canhook.errors import (
    CanHookError,
    EnvelopeMismatchError,
    ProtocolMismatchError,
    TransportError,
)


LOGGER = logging.getLogger(__name__)

Invoke = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class Envelope:
    """A single tagged message: ``{"method": ..., "data": ...}``."""

    method: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"method": self.method, "data": self.data}

    @staticmethod
    def from_dict(d: Any) -> Envelope:
        if not isinstance(d, Mapping) or not isinstance(d.get("method"), str):
            raise ProtocolMismatchError(f"Malformed envelope: {d!r}")
        return Envelope(method=d["method"], data=d.get("data"))


@dataclass(frozen=True)
class ProtocolSpec:
    """Closed set of request variants for one protocol layer.

    Each method maps to the names of the fields its request payload carries.
    The response variant shares the request's tag.
    """

    name: str
    methods: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def __contains__(self, method: object) -> bool:
        return method in self.methods

    def check_request(self, method: str, payload: Any) -> None:
        """Reject a method or payload shape that is not part of this layer."""
        if method not in self.methods:
            raise ProtocolMismatchError(f"{self.name} has no method {method!r}")
        if not isinstance(payload, Mapping):
            raise ProtocolMismatchError(
                f"{self.name}.{method} expects an object payload, got {type(payload).__name__}"
            )
        expected = set(self.methods[method])
        actual = set(payload)
        if actual != expected:
            missing = sorted(expected - actual)
            extra = sorted(actual - expected)
            raise ProtocolMismatchError(
                f"{self.name}.{method} payload mismatch (missing: {missing}, unexpected: {extra})"
            )


async def rpc_call(
    invoke: Invoke,
    spec: ProtocolSpec,
    method: str,
    payload: Optional[Mapping[str, Any]] = None,
) -> Any:
    """Perform one round trip for ``method`` and return the response data."""
    data = dict(payload or {})
    spec.check_request(method, data)

    try:
        response = await invoke(Envelope(method, data).to_dict())
    except CanHookError:
        raise
    except Exception as exc:
        raise TransportError(str(exc)) from exc

    try:
        envelope = Envelope.from_dict(response)
    except ProtocolMismatchError as exc:
        raise TransportError(str(exc)) from exc

    if envelope.method != method:
        raise EnvelopeMismatchError(method, envelope.method)

    LOGGER.debug("%s.%s ok", spec.name, method)
    return envelope.data


class RpcClient:
    """Typed caller for one protocol layer."""

    def __init__(self, invoke: Invoke, spec: ProtocolSpec) -> None:
        self._invoke = invoke
        self.spec = spec

    async def call(self, method: str, **payload: Any) -> Any:
        """Call ``method`` with keyword payload fields."""
        return await rpc_call(self._invoke, self.spec, method, payload)

    def tunnel(self, method: str, inner_field: str, **fixed: Any) -> Invoke:
        """Return an invoker that carries an inner envelope through ``method``.

        The inner envelope is placed in ``inner_field``; the other payload fields
        are fixed (e.g. the provider address).
        """

        async def invoke(inner: dict[str, Any]) -> dict[str, Any]:
            return await self.call(method, **fixed, **{inner_field: inner})

        return invoke
