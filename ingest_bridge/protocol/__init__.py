# Protocol
# Event envelope and diagnostic payload decoding

from ingest_bridge.protocol.envelope import EventEnvelope
from ingest_bridge.protocol.decoder import (
    PayloadDecoder,
    describe_payload,
    load_decoder,
)

__all__ = [
    "EventEnvelope",
    "PayloadDecoder",
    "describe_payload",
    "load_decoder",
]
