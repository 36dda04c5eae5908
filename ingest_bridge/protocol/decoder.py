"""
Payload Decoders

Best-effort diagnostic decoding of event payloads.

The payload schema is owned by an external serialization contract, so the
bridge only depends on this shape:

    decoder(payload: bytes) -> Any   # loggable value, or raises

Decoders must be pure. Whatever they return is only ever logged.
A decoder is selected with a dotted path such as "mypkg.events:parse".
"""

import importlib
from typing import Any, Callable, Protocol


class PayloadDecoder(Protocol):
    """Callable turning raw payload bytes into a loggable value."""

    def __call__(self, payload: bytes) -> Any:
        ...


PREVIEW_BYTES = 16


def describe_payload(payload: bytes) -> str:
    """Default decoder: payload size plus a short hex preview."""
    preview = payload[:PREVIEW_BYTES].hex(" ")
    if len(payload) > PREVIEW_BYTES:
        preview += " ..."
    return f"<{len(payload)} bytes: {preview}>"


def load_decoder(path: str | None) -> Callable[[bytes], Any]:
    """
    Resolve a decoder from a "module:attribute" path.

    Args:
        path: Dotted import path, or None/empty for the default decoder

    Returns:
        The decoder callable

    Raises:
        ValueError: If the path is malformed or does not name a callable
    """
    if not path:
        return describe_payload

    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(
            f"Decoder path must look like 'package.module:function', got {path!r}"
        )

    module = importlib.import_module(module_name)
    target: Any = module
    for part in attr.split("."):
        target = getattr(target, part, None)
        if target is None:
            raise ValueError(f"Decoder {path!r} not found")

    if not callable(target):
        raise ValueError(f"Decoder {path!r} is not callable")
    return target
