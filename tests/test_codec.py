"""
Tests for the encoder and decoder.
Covers round-trips, key rotation, checksums, framing and malformed streams.
"""

import io
import random
import shutil

import pytest

from padcodec import core
from padcodec.cipher import Decrypter, Encrypter
from padcodec.decoder import Decoder
from padcodec.encoder import RESERVED_KEY_LEN, Encoder, announcement_length, encode_text
from padcodec.errors import (
    HeaderParseError,
    KeyAnnouncementTooLong,
    KeyExhausted,
    KeyNotFound,
    KeyStoreError,
    MalformedHexEscape,
    MaxOneMessage,
)
from padcodec.keystore import KeyDir, MemoryKeyStore, SeededKeyStore, generate_symbols
from padcodec.state import INITIAL, CodecState
from padcodec.tables import is_wire

LONG_TEXT = "HELLO WORLD " * 25


def keys(*sizes):
    """Named keys "0", "1", ... with repeatable material."""
    return {
        str(i): generate_symbols(size, random.Random(i).randbytes)
        for i, size in enumerate(sizes)
    }


def encode_stream(store, payloads, **options):
    """Encode payloads; return the wire bytes and the encoder."""
    out = io.BytesIO()
    cipher = Encrypter(store) if store is not None else None
    enc = Encoder(out, cipher, **options)
    for payload in payloads:
        msg = enc.new_message()
        msg.write_string(payload)
        msg.close()
    enc.close()
    return out.getvalue(), enc


def decode_stream(store, wire, chunk=None):
    dec = Decoder(Decrypter(store) if store is not None else None)
    if chunk is None:
        dec.write(wire)
    else:
        for i in range(0, len(wire), chunk):
            dec.write(wire[i : i + chunk])
    dec.close()
    return dec


class TestEncodeText:
    """Test symbol selection and minimal mode changes."""

    def test_same_table_has_no_controls(self):
        assert encode_text(INITIAL, "ABC") == (INITIAL, b"ABC")

    def test_space_is_q(self):
        assert encode_text(INITIAL, "A B")[1] == b"AQB"

    def test_lower_case(self):
        assert encode_text(INITIAL, "ABab") == (CodecState(shift=True), b"ABZXZAB")

    def test_digits_after_lower_case(self):
        assert encode_text(INITIAL, "a1") == (CodecState(alt=True), b"ZXZAZXB")

    def test_newline(self):
        assert encode_text(INITIAL, "A\nB")[1] == b"AZXZQZXZB"

    def test_bell_and_tab(self):
        assert encode_text(INITIAL, "\a\t")[1] == b"ZXBC"

    def test_hex_escape(self):
        state, out = encode_text(INITIAL, "@")
        assert state == CodecState(True, False, True)
        assert out == b"ZWEA"

    def test_no_redundant_toggles(self):
        _, out = encode_text(INITIAL, "Mixed Case, 123 åäö ÅÄÖ q! \"quoted\" 50% @home\n")
        assert is_wire(out)
        assert b"ZZ" not in out
        assert b"XX" not in out
        assert b"WW" not in out

    def test_announcement_length(self):
        assert 4 <= announcement_length("0") <= RESERVED_KEY_LEN
        assert announcement_length("key-name-000123") > RESERVED_KEY_LEN


class TestPlainStream:
    """Test encoding without a cipher."""

    def test_wire_format(self):
        wire, _ = encode_stream(None, ["TEST\nMESSAGE"])
        assert wire == b"TESTZXZQZXZMESSAGEZXEF"

    def test_two_messages(self):
        wire, _ = encode_stream(None, ["A", "B"])
        assert wire == b"AZXEXZBZXEF"
        dec = decode_stream(None, wire)
        assert [m.read() for m in dec.messages] == [b"A", b"B"]
        assert all(m.closed for m in dec.messages)

    def test_no_end_markers(self):
        wire, _ = encode_stream(None, ["AB"], no_end_markers=True)
        assert wire == b"AB"
        assert decode_stream(None, wire).messages[0].read() == b"AB"

    def test_max_one_message(self):
        enc = Encoder(io.BytesIO(), no_end_markers=True)
        enc.new_message().close()
        with pytest.raises(MaxOneMessage):
            enc.new_message()

    def test_one_message_at_a_time(self):
        enc = Encoder(io.BytesIO())
        enc.new_message()
        with pytest.raises(ValueError):
            enc.new_message()

    def test_idempotent_close(self):
        out = io.BytesIO()
        enc = Encoder(out)
        msg = enc.new_message()
        msg.write_string("AB")
        msg.close()
        msg.close()
        enc.close()
        enc.close()
        assert out.getvalue() == b"ABZXEF"

    def test_encoder_close_closes_message(self):
        out = io.BytesIO()
        with Encoder(out) as enc:
            enc.new_message().write_string("AB")
        assert out.getvalue() == b"ABZXEF"

    def test_write_after_close(self):
        enc = Encoder(io.BytesIO())
        msg = enc.new_message()
        msg.close()
        with pytest.raises(ValueError):
            msg.write(b"A")
        enc.close()
        with pytest.raises(ValueError):
            enc.new_message()

    def test_reserved_key_len_minimum(self):
        with pytest.raises(ValueError):
            Encoder(io.BytesIO(), reserved_key_len=3)


class TestRoundTrip:
    """Test decode(encode(m)) == m over both payload paths."""

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "TEST MESSAGE",
            "Grüße, 你好 ☃ åäö ÅÄÖ",
            "line one\nline two\n\ttabbed\a",
            "quote \" slash / percent % colon : bang !",
        ],
    )
    def test_text(self, text):
        [msg] = core.decode(core.encode(text))
        assert msg.text == text

    def test_arbitrary_bytes_on_text_path(self):
        data = b"\xff\xfeABC\x00\xc3"
        [msg] = core.decode(core.encode(data))
        assert msg.content == data

    def test_binary_path(self):
        data = bytes(range(256))
        wire = core.encode(data, content_type="image/png", crc=True)
        assert is_wire(wire.encode("ascii"))
        [msg] = core.decode(wire)
        assert msg.content == data
        assert msg.header == {"CT": "IMAGE/PNG"}
        assert msg.checksum_ok is True

    def test_multibyte_char_split_across_writes(self):
        out = io.BytesIO()
        enc = Encoder(out)
        msg = enc.new_message()
        raw = "å".encode("utf-8")
        msg.write(raw[:1])
        msg.write(raw[1:])
        enc.close()
        dec = decode_stream(None, out.getvalue())
        assert dec.messages[0].read() == raw

    def test_grouped_without_end_markers(self):
        assert core.encode("HI", no_end_markers=True, group=True) == "HI"
        wire = core.encode("HI", SeededKeyStore(seed=3), no_end_markers=True, group=True)
        [msg] = core.decode(wire, SeededKeyStore(seed=3))
        assert msg.content == b"HI"

    def test_grouped_input(self):
        wire = core.encode(LONG_TEXT, crc=True)
        grouped = core.encode(LONG_TEXT, crc=True, group=True)
        assert " " in grouped
        assert core.decode(grouped) == core.decode(wire)

    def test_byte_at_a_time(self):
        wire, _ = encode_stream(None, ["Mixed text 123 @ end"])
        dec = decode_stream(None, wire, chunk=1)
        assert dec.messages[0].read() == b"Mixed text 123 @ end"


class TestChecksum:
    """Test CRC-32 verification."""

    def test_enciphered_checksum(self):
        enc_store, dec_store = SeededKeyStore(seed=5), SeededKeyStore(seed=5)
        [msg] = core.decode(core.encode("TEST MESSAGE", enc_store, crc=True), dec_store)
        assert msg.text == "TEST MESSAGE"
        assert msg.checksum_ok is True

    def test_flipped_symbol(self):
        wire = core.encode("TEST MESSAGE", crc=True)
        assert wire.startswith("TESTQMESSAGE")
        [msg] = core.decode("U" + wire[1:])
        assert msg.text == "UEST MESSAGE"
        assert msg.checksum_ok is False

    def test_without_checksum(self):
        dec = decode_stream(None, core.encode("ABC").encode("ascii"))
        msg = dec.messages[0]
        assert not msg.has_checksum()
        assert not msg.verify_checksum()


class TestHeaders:
    """Test headers on the wire."""

    def test_json_with_filename(self):
        body = '{"name": "test", "values": [1, 2, 3]}'
        wire = core.encode(body, content_type="APPLICATION/JSON", filename="TEST.JSON")
        dec = decode_stream(None, wire.encode("ascii"))
        msg = dec.messages[0]
        assert msg.has_header()
        assert msg.header == {"CT": "APPLICATION/JSON", "FN": "TEST.JSON"}
        assert msg.content_type == "APPLICATION/JSON"
        assert msg.filename == "TEST.JSON"
        assert msg.is_text()
        assert msg.read() == body.encode("utf-8")

    def test_header_only_message(self):
        out = io.BytesIO()
        enc = Encoder(out)
        enc.new_message().with_filename("empty.txt").close()
        enc.close()
        [msg] = core.decode(out.getvalue())
        assert msg.header == {"FN": "empty.txt"}
        assert msg.content == b""

    def test_custom_header(self):
        out = io.BytesIO()
        enc = Encoder(out)
        msg = enc.new_message()
        msg.header["ID"] = "42"
        msg.header["TO"] = "ALPHA,BRAVO"
        msg.write_string("HI")
        enc.close()
        [got] = core.decode(out.getvalue())
        assert got.header == {"ID": "42", "TO": "ALPHA,BRAVO"}
        assert got.text == "HI"

    def test_header_value_with_space(self):
        enc = Encoder(io.BytesIO())
        msg = enc.new_message()
        msg.header["DTG"] = "09 1630Z"
        with pytest.raises(ValueError):
            msg.write(b"A")

    def test_header_sent_after_fixing_value(self):
        out = io.BytesIO()
        enc = Encoder(out)
        msg = enc.new_message()
        msg.header["DTG"] = "09 1630Z"
        with pytest.raises(ValueError):
            msg.write_string("HI")
        msg.header["DTG"] = "091630Z"
        msg.write_string("HI")
        enc.close()
        [got] = core.decode(out.getvalue())
        assert got.header == {"DTG": "091630Z"}
        assert got.text == "HI"

    def test_malformed_header(self):
        dec = Decoder()
        dec.write("ZXAHXZCTZXAE")
        msg = dec.messages[0]
        assert msg.has_header()
        assert msg.header == {}
        assert isinstance(msg.errors[0], HeaderParseError)


class TestDecoder:
    """Test decoder behaviour on hand-made streams."""

    def test_non_letters_dropped(self):
        dec = Decoder()
        dec.write("A b\nC")
        dec.close()
        assert dec.messages[0].read() == b"AC"

    def test_reserved_letters_ignored(self):
        dec = Decoder()
        dec.write("ZXDXZAB")
        dec.close()
        assert dec.messages[0].read() == b"AB"

    def test_empty_message(self):
        dec = Decoder()
        dec.write("ZXE")
        assert len(dec.messages) == 1
        assert dec.messages[0].closed
        assert dec.messages[0].read() == b""

    def test_published_before_content(self):
        seen = []
        dec = Decoder(on_message=lambda m: seen.append((m, m.read())))
        dec.write("ABZXE")
        assert len(seen) == 1
        assert seen[0][1] == b""
        assert seen[0][0].read() == b"AB"

    def test_eot_discards_rest_of_write(self):
        dec = Decoder()
        dec.write("ABZXFZZZZ")
        assert dec.state == INITIAL
        assert len(dec.messages) == 1

    def test_close_idempotent(self):
        dec = Decoder()
        dec.close()
        dec.close()
        with pytest.raises(ValueError):
            dec.write("A")

    def test_malformed_hex(self):
        dec = Decoder()
        with pytest.raises(MalformedHexEscape):
            dec.write("ZWABQ")
        msg = dec.messages[0]
        assert msg.read() == b"\x01"
        assert msg.closed
        assert isinstance(msg.errors[0], MalformedHexEscape)

    def test_dangling_nibble(self):
        dec = Decoder()
        dec.write("ZWABCWXE")
        msg = dec.messages[0]
        assert msg.closed
        assert msg.read() == b"\x01"
        assert isinstance(msg.errors[0], MalformedHexEscape)

    def test_nibble_survives_write_calls(self):
        dec = Decoder()
        dec.write("ZWA")
        dec.write("B")
        dec.close()
        assert dec.messages[0].read() == b"\x01"


class TestKeyRotation:
    """Test enciphered streams and in-band key changes."""

    def test_single_rotation(self):
        wire, enc = encode_stream(SeededKeyStore(seed=1, key_size=256), [LONG_TEXT])
        assert enc.key_names == ["0", "1"]
        assert is_wire(wire)
        # the first key is named in clear
        assert wire.startswith(b"ZYAY")
        dec = decode_stream(SeededKeyStore(seed=1, key_size=256), wire)
        assert dec.key_names == ["0", "1"]
        assert dec.messages[0].read() == LONG_TEXT.encode("ascii")

    def test_ciphertext_differs_from_plaintext(self):
        wire, _ = encode_stream(SeededKeyStore(seed=1), ["TEST MESSAGE"])
        assert b"TESTQMESSAGE" not in wire

    def test_many_rotations_binary(self):
        data = bytes(range(256)) * 3
        out = io.BytesIO()
        enc = Encoder(out, Encrypter(SeededKeyStore(seed=9, key_size=64)))
        msg = enc.new_message().with_content_type("APPLICATION/OCTET-STREAM").with_crc32()
        msg.write(data)
        enc.close()
        assert len(enc.key_names) > 20
        [got] = core.decode(out.getvalue(), SeededKeyStore(seed=9, key_size=64))
        assert got.content == data
        assert got.checksum_ok is True

    def test_rotation_inside_header(self):
        name = "F" * 300 + ".TXT"
        wire = core.encode("BODY", SeededKeyStore(seed=2, key_size=64), filename=name)
        [got] = core.decode(wire, SeededKeyStore(seed=2, key_size=64))
        assert got.header == {"FN": name}
        assert got.text == "BODY"

    def test_streaming_decode(self):
        text = "Mixed Case text, 123 and åäö @ symbols\n" * 10
        wire, _ = encode_stream(SeededKeyStore(seed=4, key_size=48), [text, "second"])
        dec = decode_stream(SeededKeyStore(seed=4, key_size=48), wire, chunk=7)
        assert [m.read() for m in dec.messages] == [text.encode("utf-8"), b"second"]

    def test_payload_ends_at_reserve(self):
        # "Z" restores the state after the clear announcement, then ten letters
        store_keys = keys(1 + 10 + RESERVED_KEY_LEN, 64)
        wire, enc = encode_stream(MemoryKeyStore(store_keys), ["ABCDEFGHIJ"], no_end_markers=True)
        assert enc.key_names == ["0"]
        dec = decode_stream(MemoryKeyStore(store_keys), wire)
        assert dec.messages[0].read() == b"ABCDEFGHIJ"

    def test_markers_after_reserve_rotate(self):
        store_keys = keys(1 + 10 + RESERVED_KEY_LEN, 64)
        wire, enc = encode_stream(MemoryKeyStore(store_keys), ["ABCDEFGHIJ"])
        assert enc.key_names == ["0", "1"]
        dec = decode_stream(MemoryKeyStore(store_keys), wire)
        assert dec.key_names == ["0", "1"]
        assert dec.messages[0].read() == b"ABCDEFGHIJ"
        assert dec.messages[0].closed

    def test_key_exhausted(self):
        store_keys = keys(40)
        out = io.BytesIO()
        enc = Encoder(out, Encrypter(MemoryKeyStore(store_keys)))
        msg = enc.new_message()
        with pytest.raises(KeyExhausted):
            msg.write_string("A" * 100)
        assert enc.closed
        msg.close()
        enc.close()
        # what was sent is still a closed transmission
        dec = decode_stream(MemoryKeyStore(store_keys), out.getvalue())
        assert dec.messages[0].closed
        assert dec.messages[0].read() == b"A" * 23

    def test_announcement_too_long(self):
        material = keys(30)["0"]
        store_keys = {"0": material, "longname": material, "zz": material}
        out = io.BytesIO()
        enc = Encoder(out, Encrypter(MemoryKeyStore(store_keys)), reserved_key_len=4)
        with pytest.raises(KeyAnnouncementTooLong):
            enc.new_message().write_string("A" * 40)
        assert enc.closed
        enc.close()
        dec = decode_stream(MemoryKeyStore(store_keys), out.getvalue())
        assert dec.key_names == ["0"]
        assert dec.messages[0].closed
        assert dec.messages[0].read() == b"A" * 25

    def test_next_key_shorter_than_reserve(self):
        store_keys = keys(30, 3)
        out = io.BytesIO()
        enc = Encoder(out, Encrypter(MemoryKeyStore(store_keys)), reserved_key_len=4)
        with pytest.raises(KeyStoreError):
            enc.new_message().write_string("A" * 40)
        assert enc.closed
        enc.close()
        dec = decode_stream(MemoryKeyStore(store_keys), out.getvalue())
        assert dec.messages[0].closed
        assert dec.messages[0].read() == b"A" * 25

    def test_key_shorter_than_reserve(self):
        enc = Encoder(io.BytesIO(), Encrypter(MemoryKeyStore({"0": "A" * RESERVED_KEY_LEN})))
        with pytest.raises(KeyStoreError):
            enc.new_message().write_string("HI")
        assert enc.closed

    def test_unknown_key(self):
        wire, _ = encode_stream(SeededKeyStore(seed=1), ["HELLO"])
        with pytest.raises(KeyNotFound):
            decode_stream(MemoryKeyStore(), wire)

    def test_key_dirs(self, tmp_path):
        send, recv = tmp_path / "send", tmp_path / "recv"
        send.mkdir()
        with KeyDir(send) as store:
            for i in range(20):
                store.generate(str(i), 64)
        shutil.copytree(send, recv)

        with KeyDir(send) as store:
            wire = core.encode(LONG_TEXT, store, crc=True, group=True)
        assert not (send / "0.key").exists()

        with KeyDir(recv) as store:
            [msg] = core.decode(wire, store)
        assert msg.text == LONG_TEXT
        assert msg.checksum_ok is True
        assert not (recv / "0.key").exists()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
