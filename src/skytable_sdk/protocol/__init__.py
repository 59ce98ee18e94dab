"""
Skyhash protocol layer: frame codec and handshake.
"""

from .codec import (
    DecodeResult,
    Decoder,
    decode_response,
    decode_value,
    encode_param,
    encode_pipeline_response,
    encode_response,
    encode_value,
)
from .handshake import ServerHandshake, client_hello

__all__ = [
    "DecodeResult",
    "Decoder",
    "decode_response",
    "decode_value",
    "encode_param",
    "encode_pipeline_response",
    "encode_response",
    "encode_value",
    "ServerHandshake",
    "client_hello",
]
