"""
Tests for save string decode/encode on top of a generated codec.
"""

import json
import sys

import pytest

import save_codec
from save_codec import SaveCodecError, decode_save, encode_save, roundtrip
from save_envelope import InvalidSaveStringError, append_checksum, unwrap, wrap

REALM_RAW = bytes.fromhex('0003010201000501020100003ff8000000000000deadbeef')


@pytest.fixture
def realm_save():
    return wrap(append_checksum(REALM_RAW), 3)


class TestDecodeEncode:

    def test_decode_with_checksum(self, realm_codec, realm_save):
        version, record = decode_save(realm_codec, realm_save, checksum=True)
        assert version == 3
        assert record.save_version == 3
        assert record.realms[0].buildings[1].level == 256

    def test_decode_without_checksum_reports_trailing(self, realm_codec, realm_save, caplog):
        _, record = decode_save(realm_codec, realm_save)
        assert record.seed == 0xDEADBEEF
        assert 'trailing bytes' in caplog.text

    def test_bad_checksum(self, realm_codec):
        corrupt = append_checksum(REALM_RAW)[:-1] + b'\x00'
        with pytest.raises(SaveCodecError, match='checksum'):
            decode_save(realm_codec, wrap(corrupt, 3), checksum=True)

    def test_undecodable_record(self, realm_codec):
        with pytest.raises(SaveCodecError, match='buffer too short'):
            decode_save(realm_codec, wrap(REALM_RAW[:5], 3))

    def test_encode_reproduces_save(self, realm_codec, realm_save):
        _, record = decode_save(realm_codec, realm_save, checksum=True)
        assert encode_save(realm_codec, record, checksum=True) == realm_save

    def test_version_from_record(self, realm_codec):
        record = realm_codec.to_dict(realm_codec.decode(REALM_RAW).value)
        assert encode_save(realm_codec, record).startswith('$03s')
        assert encode_save(realm_codec, record, version=9).startswith('$09s')

    def test_encode_failure(self, realm_codec):
        with pytest.raises(SaveCodecError, match='missing field'):
            encode_save(realm_codec, {'save_version': 1})

    def test_roundtrip(self, realm_codec, realm_save):
        assert roundtrip(realm_codec, realm_save, checksum=True)

    def test_invalid_envelope(self, realm_codec):
        with pytest.raises(InvalidSaveStringError):
            decode_save(realm_codec, 'not a save')


class TestCli:

    def run(self, monkeypatch, *argv):
        monkeypatch.setattr(sys, 'argv', ['save_codec.py', *map(str, argv)])
        save_codec.main()

    def test_decode(self, monkeypatch, capsys, tmp_path, schemas_dir, realm_save):
        save_path = tmp_path / 'save.txt'
        save_path.write_text(realm_save)

        self.run(monkeypatch, 'decode', schemas_dir / 'realm_save.yaml', save_path, '--checksum')

        record = json.loads(capsys.readouterr().out)
        assert record['seed'] == 0xDEADBEEF
        assert record['realms'][0]['gems'] == 1.5

    def test_encode(self, monkeypatch, capsys, tmp_path, schemas_dir, realm_codec):
        record_path = tmp_path / 'record.json'
        record_path.write_text(json.dumps(realm_codec.to_dict(realm_codec.decode(REALM_RAW).value)))

        self.run(monkeypatch, 'encode', schemas_dir / 'realm_save.yaml', record_path, '--version', 5)

        out = capsys.readouterr().out.strip()
        assert out.startswith('$05s')
        assert unwrap(out) == REALM_RAW

    def test_roundtrip(self, monkeypatch, capsys, tmp_path, schemas_dir, realm_save):
        save_path = tmp_path / 'save.txt'
        save_path.write_text(realm_save)

        with pytest.raises(SystemExit) as exc_info:
            self.run(monkeypatch, 'roundtrip', schemas_dir / 'realm_save.yaml', save_path, '--checksum')

        assert exc_info.value.code == 0
        assert capsys.readouterr().out.strip() == 'True'

    def test_error_exit(self, monkeypatch, capsys, tmp_path, schemas_dir):
        save_path = tmp_path / 'save.txt'
        save_path.write_text('garbage')

        with pytest.raises(SystemExit) as exc_info:
            self.run(monkeypatch, 'decode', schemas_dir / 'realm_save.yaml', save_path)

        assert exc_info.value.code == 1
        assert 'not in a known format' in capsys.readouterr().err
