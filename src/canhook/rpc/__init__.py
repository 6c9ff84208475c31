"""Envelope codec, protocol layers and transports."""

from canhook.rpc.envelope import Envelope, Invoke, ProtocolSpec, RpcClient, rpc_call
from canhook.rpc.server import RpcHandler, rpc_method
from canhook.rpc.transport import LoopbackTransport, Transport

__all__ = [
    "Envelope",
    "Invoke",
    "ProtocolSpec",
    "RpcClient",
    "rpc_call",
    "RpcHandler",
    "rpc_method",
    "LoopbackTransport",
    "Transport",
]
