"""Tests for header decoding and message parsing helpers."""

from mailbridge.email import Message, decode_mime_header, normalize_message_id


class TestDecodeMimeHeader:
    def test_plain(self):
        assert decode_mime_header("Hello") == "Hello"

    def test_encoded_word(self):
        assert decode_mime_header("=?utf-8?q?Caf=C3=A9?=") == "Café"

    def test_unknown_charset_falls_back_to_utf8(self):
        assert decode_mime_header("=?x-unknown?Q?Caf=C3=A9?=") == "Café"

    def test_none(self):
        assert decode_mime_header(None) == ""


class TestMessage:
    def test_message_id_normalized(self, make_raw):
        assert Message(make_raw("abc@example.com")).message_id == "abc@example.com"
        assert normalize_message_id(" <x@y> ") == "x@y"
        assert normalize_message_id("<>") is None
