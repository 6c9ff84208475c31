"""Transport boundary between the client core and the host environment."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from canhook.errors import TransportError
from canhook.rpc.server import RpcHandler


LOGGER = logging.getLogger(__name__)


class Transport(Protocol):
    """One opaque asynchronous request/response operation."""

    async def send(self, envelope: dict[str, Any]) -> dict[str, Any]:
        """Deliver a request envelope and return the response envelope."""
        ...


class LoopbackTransport:
    """Delivers envelopes to an in-process handler.

    Requests and responses cross the boundary as JSON text, so nothing but
    plain data can leak between the two sides. Any failure on the host side is
    rejected with its message, the way a host bridge reports errors.
    """

    def __init__(self, handler: RpcHandler) -> None:
        self._handler = handler
        self.round_trips = 0

    async def send(self, envelope: dict[str, Any]) -> dict[str, Any]:
        self.round_trips += 1
        request = json.loads(json.dumps(envelope))
        try:
            response = await self._handler.rpc_process(request)
        except Exception as exc:
            LOGGER.debug("host rejected %s: %s", request.get("method"), exc)
            raise TransportError(str(exc)) from exc
        return json.loads(json.dumps(response))

    async def __call__(self, envelope: dict[str, Any]) -> dict[str, Any]:
        return await self.send(envelope)
