"""
Wire protocol for the multiplexed variant stream.

Encodes frames into self-delimited blocks and decodes them back on the
consumer side.
"""

from .decoder import FrameDecoder, VariantBuffer, VariantDemultiplexer
from .frames import Frame, FrameKind, encode_frame

__all__ = [
    "Frame",
    "FrameDecoder",
    "FrameKind",
    "VariantBuffer",
    "VariantDemultiplexer",
    "encode_frame",
]
