"""Tests for status.json publishing and principal text encoding."""

import json

import pytest

from network_launcher.clients.pocketic_client import ConfiguredInstance
from network_launcher.core.principal import Principal
from network_launcher.core.status import StatusPublisher, StatusRecord
from network_launcher.errors import StatusWriteError


@pytest.mark.parametrize(
    "raw,text",
    [
        (bytes.fromhex("00000000000000010101"), "rrkah-fqaaa-aaaaa-aaaaq-cai"),
        (b"", "aaaaa-aa"),
    ],
)
def test_principal_text_round_trip(raw, text):
    assert Principal(raw).to_text() == text
    assert Principal.from_text(text).raw == raw


def test_principal_rejects_bad_checksum():
    with pytest.raises(ValueError, match="checksum"):
        Principal.from_text("rrkah-fqaaa-aaaaa-aaaaq-caa")


def test_principal_rejects_oversized_bytes():
    with pytest.raises(ValueError):
        Principal(bytes(30))


def _instance():
    return ConfiguredInstance(
        instance_id=3,
        config_port=8081,
        gateway_port=4943,
        default_effective_canister_id=bytes.fromhex("00000000000000010101"),
        root_key=bytes(range(256))[:133],
    )


def test_status_record_from_instance():
    record = StatusRecord.from_instance(_instance())
    assert record.to_dict() == {
        "v": "1",
        "instance_id": 3,
        "config_port": 8081,
        "gateway_port": 4943,
        "root_key": bytes(range(133)).hex(),
        "default_effective_canister_id": "rrkah-fqaaa-aaaaa-aaaaq-cai",
    }
    assert len(bytes.fromhex(record.root_key)) == 133


def test_publish_writes_single_json_line(tmp_path, capsys):
    publisher = StatusPublisher(tmp_path)
    path = publisher.publish(StatusRecord.from_instance(_instance()))

    assert path == tmp_path / "status.json"
    contents = path.read_text()
    assert contents.endswith("}\n")
    assert contents.count("\n") == 1
    assert json.loads(contents)["config_port"] == 8081
    assert capsys.readouterr().out == f"launcher: writing status to {path}\n"
    # no temp files left behind
    assert [p.name for p in tmp_path.iterdir()] == ["status.json"]


def test_publish_is_at_most_once(tmp_path):
    publisher = StatusPublisher(tmp_path)
    record = StatusRecord.from_instance(_instance())
    publisher.publish(record)
    with pytest.raises(StatusWriteError, match="already written"):
        publisher.publish(record)
    assert publisher.published == record


def test_publish_into_missing_directory_fails(tmp_path):
    publisher = StatusPublisher(tmp_path / "missing", "custom.json")
    with pytest.raises(StatusWriteError, match="failed to write status file"):
        publisher.publish(StatusRecord.from_instance(_instance()))
    assert publisher.published is None
