"""Server-side dispatch of envelopes onto handler methods."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, ClassVar, TypeVar

from canhook.rpc.envelope import Envelope, ProtocolSpec


LOGGER = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def rpc_method(fn: F) -> F:
    """Mark a coroutine method as a request variant of its handler's protocol."""
    if not inspect.iscoroutinefunction(fn):
        raise TypeError(f"RPC method {fn.__name__} must be a coroutine function")
    fn.__rpc_method__ = True  # type: ignore[attr-defined]
    return fn


class RpcHandler:
    """Base class for anything that answers envelopes.

    Subclasses mark methods with :func:`rpc_method`; the closed variant set
    (``spec``) is derived from those methods and their parameter names.
    """

    protocol_name: ClassVar[str] = ""
    spec: ClassVar[ProtocolSpec] = ProtocolSpec("RpcHandler")

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        methods: dict[str, tuple[str, ...]] = {}
        for name in dir(cls):
            member = getattr(cls, name, None)
            if getattr(member, "__rpc_method__", False):
                params = list(inspect.signature(member).parameters)[1:]
                methods[name] = tuple(params)
        cls.spec = ProtocolSpec(cls.protocol_name or cls.__name__, methods)

    async def rpc_process(self, request: Any) -> dict[str, Any]:
        """Dispatch one request envelope and return the paired response envelope."""
        envelope = Envelope.from_dict(request)
        payload = envelope.data if envelope.data is not None else {}
        self.spec.check_request(envelope.method, payload)

        LOGGER.debug("%s <- %s", self.spec.name, envelope.method)
        result = await getattr(self, envelope.method)(**payload)
        return Envelope(envelope.method, result).to_dict()
