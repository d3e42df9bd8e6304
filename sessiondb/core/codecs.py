"""
Decoders for stored session payloads.

The live read/write path never looks inside a payload. These codecs exist for
administrative inspection only, and always decode into a fresh dictionary.
"""

import json
from typing import Any, Dict
from urllib.parse import parse_qsl, urlencode

from sessiondb.core.exceptions import MalformedPayloadError


class SessionCodec:
    """Base class for payload codecs"""

    name = "abstract"

    def decode(self, payload: str) -> Dict[str, Any]:
        raise NotImplementedError

    def encode(self, values: Dict[str, Any]) -> str:
        raise NotImplementedError


class JSONSessionCodec(SessionCodec):
    """Payloads holding a JSON object"""

    name = "json"

    def decode(self, payload: str) -> Dict[str, Any]:
        if not payload:
            return {}
        try:
            decoded = json.loads(payload)
        except ValueError as e:
            raise MalformedPayloadError(f"Payload is not valid JSON: {e}") from e
        if not isinstance(decoded, dict):
            raise MalformedPayloadError(
                f"Payload must be a JSON object, got {type(decoded).__name__}"
            )
        return decoded

    def encode(self, values: Dict[str, Any]) -> str:
        return json.dumps(values, separators=(",", ":"), sort_keys=True)


class FormSessionCodec(SessionCodec):
    """Payloads in ``key=value&key2=value2`` form encoding"""

    name = "form"

    def decode(self, payload: str) -> Dict[str, Any]:
        if not payload:
            return {}
        try:
            pairs = parse_qsl(payload, keep_blank_values=True, strict_parsing=True)
        except ValueError as e:
            raise MalformedPayloadError(f"Payload is not form encoded: {e}") from e
        return dict(pairs)

    def encode(self, values: Dict[str, Any]) -> str:
        return urlencode(values)


_CODECS = {
    JSONSessionCodec.name: JSONSessionCodec,
    FormSessionCodec.name: FormSessionCodec,
}


def get_codec(name: str) -> SessionCodec:
    """Look up a codec by its configured name"""
    try:
        return _CODECS[name.lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown session codec {name!r}; expected one of {sorted(_CODECS)}"
        ) from None
