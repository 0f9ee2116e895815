"""
Tests for the save string envelope.
"""

import base64
import zlib

import pytest

from save_envelope import (
    CIPHER_KEY, CompressionError, EnvelopeError, InvalidBase64Error, InvalidSaveStringError,
    append_checksum, apply_cipher, parse_envelope, split_checksum, unwrap, wrap,
)

KNOWN_SAVE = "$00seJwrLi0GAAK5AVw=$e"
KNOWN_RAW = bytes([7, 29, 22])


class TestKnownSave:

    def test_unwrap(self):
        assert unwrap(KNOWN_SAVE) == KNOWN_RAW

    def test_wrap(self):
        assert wrap(KNOWN_RAW, 0) == KNOWN_SAVE

    def test_parse_envelope_version(self):
        assert parse_envelope("$12s" + KNOWN_SAVE[4:]) == (12, KNOWN_RAW)

    def test_surrounding_whitespace(self):
        assert unwrap(KNOWN_SAVE + "\n") == KNOWN_RAW


class TestRoundtrip:

    @pytest.mark.parametrize('raw', [b'', b'\x00', bytes(range(256)), b'save' * 500])
    def test_wrap_unwrap(self, raw):
        assert unwrap(wrap(raw, 7)) == raw

    def test_version_format(self):
        assert wrap(b'x', 3).startswith('$03s')
        assert wrap(b'x', 42).startswith('$42s')
        assert wrap(b'x').endswith('$e')

    @pytest.mark.parametrize('version', [-1, 100])
    def test_version_range(self, version):
        with pytest.raises(ValueError):
            wrap(b'x', version)


class TestCipher:

    def test_involution(self):
        data = bytes(range(40))
        assert apply_cipher(apply_cipher(data)) == data

    def test_key_cycles_from_start(self):
        assert apply_cipher(bytes(len(CIPHER_KEY) * 2)) == CIPHER_KEY * 2


class TestErrors:

    @pytest.mark.parametrize('save', [
        '',
        '00seJwrLi0GAAK5AVw=$e',
        '$0seJwrLi0GAAK5AVw=$e',
        '$00xeJwrLi0GAAK5AVw=$e',
        '$00seJwrLi0GAAK5AVw=',
    ])
    def test_not_a_save_string(self, save):
        with pytest.raises(InvalidSaveStringError):
            unwrap(save)

    def test_bad_base64(self):
        with pytest.raises(InvalidBase64Error):
            unwrap('$00s!!!!$e')

    def test_not_zlib(self):
        data = base64.b64encode(b'plain bytes').decode('ascii')
        with pytest.raises(CompressionError):
            unwrap(f'$00s{data}$e')

    def test_truncated_stream(self):
        data = base64.b64encode(zlib.compress(b'x' * 100)[:-6]).decode('ascii')
        with pytest.raises(CompressionError):
            unwrap(f'$00s{data}$e')

    def test_hierarchy(self):
        for cls in (InvalidSaveStringError, InvalidBase64Error, CompressionError):
            assert issubclass(cls, EnvelopeError)


class TestChecksum:

    def test_append(self):
        raw = append_checksum(b'123456789')
        # CRC32 check value
        assert raw[-4:] == bytes.fromhex('cbf43926')

    def test_split_valid(self):
        assert split_checksum(append_checksum(KNOWN_RAW)) == (KNOWN_RAW, True)

    def test_split_corrupt(self):
        raw = bytearray(append_checksum(KNOWN_RAW))
        raw[0] ^= 0xFF
        payload, valid = split_checksum(bytes(raw))
        assert payload == bytes(raw[:-4])
        assert not valid

    def test_split_short(self):
        assert split_checksum(b'\x01\x02') == (b'\x01\x02', False)
