from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from ingest_bridge.protocol import EventEnvelope
from ingest_bridge.protocol.decoder import describe_payload, load_decoder


def test_describe_short_payload() -> None:
    assert describe_payload(b"\x01\x02\xff") == "<3 bytes: 01 02 ff>"


def test_describe_long_payload_is_truncated() -> None:
    text = describe_payload(bytes(40))
    assert text.startswith("<40 bytes: 00 00")
    assert text.endswith(" ...>")


def test_default_decoder_when_unset() -> None:
    assert load_decoder(None) is describe_payload
    assert load_decoder("") is describe_payload


def test_load_decoder_by_path() -> None:
    assert load_decoder("json:loads") is json.loads


@pytest.mark.parametrize("path", ["json", "json:", ":loads", "json:no_such_thing", "json:__doc__"])
def test_bad_decoder_paths_are_rejected(path) -> None:
    with pytest.raises(ValueError):
        load_decoder(path)


def test_envelope_is_immutable_and_describes_itself() -> None:
    envelope = EventEnvelope(sender_id="conn-x", payload=b"abc", sequence=4)
    assert envelope.size == 3
    assert envelope.describe() == "conn-x#4 (3 bytes)"
    assert envelope.received_at.tzinfo is not None
    with pytest.raises(ValidationError):
        envelope.payload = b"changed"


def test_envelope_rejects_negative_sequence() -> None:
    with pytest.raises(ValueError):
        EventEnvelope(sender_id="conn-x", payload=b"", sequence=-1)
