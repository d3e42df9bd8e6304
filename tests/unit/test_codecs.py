"""Unit tests for the payload codecs used by session inspection"""

import pytest

from sessiondb.core.codecs import FormSessionCodec, JSONSessionCodec, get_codec
from sessiondb.core.exceptions import MalformedPayloadError

pytestmark = pytest.mark.unit


class TestJSONSessionCodec:

    def test_decodes_object(self):
        codec = JSONSessionCodec()
        assert codec.decode('{"user": "ana", "cart": [1, 2]}') == {"user": "ana", "cart": [1, 2]}

    def test_empty_payload_is_empty_mapping(self):
        assert JSONSessionCodec().decode("") == {}

    def test_invalid_json_raises(self):
        with pytest.raises(MalformedPayloadError):
            JSONSessionCodec().decode("{not json")

    def test_non_object_raises(self):
        with pytest.raises(MalformedPayloadError, match="JSON object"):
            JSONSessionCodec().decode("[1, 2, 3]")

    def test_each_decode_returns_a_fresh_mapping(self):
        codec = JSONSessionCodec()
        first = codec.decode('{"k": 1}')
        first["k"] = 99
        assert codec.decode('{"k": 1}') == {"k": 1}


class TestFormSessionCodec:

    def test_decodes_pairs(self):
        assert FormSessionCodec().decode("k=1&theme=dark") == {"k": "1", "theme": "dark"}

    def test_keeps_blank_values(self):
        assert FormSessionCodec().decode("flash=") == {"flash": ""}

    def test_malformed_raises(self):
        with pytest.raises(MalformedPayloadError):
            FormSessionCodec().decode("no-separator-here")

    def test_encode(self):
        assert FormSessionCodec().encode({"k": "2"}) == "k=2"


class TestGetCodec:

    @pytest.mark.parametrize("name,expected", [("json", JSONSessionCodec), ("FORM", FormSessionCodec)])
    def test_known_names(self, name, expected):
        assert isinstance(get_codec(name), expected)

    def test_unknown_name(self):
        with pytest.raises(ValueError, match="Unknown session codec"):
            get_codec("pickle")
