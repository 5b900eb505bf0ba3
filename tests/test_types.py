import json

import pytest

from funnel.daemon.types import (
    ActionRequest,
    AddRequest,
    AddResponse,
    DaemonStatus,
    ErrorResponse,
    Status,
    StorageInfo,
    TorrentInfo,
)


@pytest.mark.parametrize(
    "value, member",
    [
        ("queued", Status.QUEUED),
        ("downloading", Status.DOWNLOADING),
        ("seeding", Status.SEEDING),
        ("paused", Status.PAUSED),
        ("failed", Status.FAILED),
    ],
)
def test_status_parses_wire_value(value, member):
    assert Status(value) is member
    assert str(member) == value


def test_status_rejects_unknown_value():
    with pytest.raises(ValueError):
        Status("exploded")


def test_torrent_info_round_trip():
    info = TorrentInfo(
        id="abc", name="Movie", magnet="magnet:?xt=abc", size=42,
        progress=12.5, status=Status.SEEDING, peers=3,
    )
    data = json.loads(json.dumps(info.to_dict()))
    assert TorrentInfo.from_dict(data) == info


def test_torrent_info_uses_source_field_names():
    data = TorrentInfo(id="x").to_dict()
    assert set(data) == {"id", "name", "magnet", "size", "progress", "status", "peers"}
    assert data["status"] == "queued"


def test_torrent_info_unknown_status_raises():
    with pytest.raises(ValueError):
        TorrentInfo.from_dict({"id": "x", "status": "nonsense"})


def test_daemon_status_round_trip():
    status = DaemonStatus(
        running=True,
        counts={Status.DOWNLOADING: 2, Status.QUEUED: 1},
        storage=StorageInfo(type="local", location="/data"),
    )
    data = json.loads(json.dumps(status.to_dict()))
    assert data["counts"]["downloading"] == 2
    assert data["storage"] == {"type": "local", "location": "/data"}
    assert DaemonStatus.from_dict(data) == status


def test_daemon_status_missing_counts_is_empty():
    status = DaemonStatus.from_dict({"running": True})
    assert status.running is True
    assert status.counts == {}
    assert status.storage == StorageInfo()


def test_add_request_missing_magnet_is_empty():
    assert AddRequest.from_dict({}).magnet == ""


def test_add_request_reads_magnet():
    assert AddRequest.from_dict({"magnet": "magnet:?xt=abc"}).magnet == "magnet:?xt=abc"


def test_add_request_wrong_type_raises():
    with pytest.raises(ValueError):
        AddRequest.from_dict({"magnet": 5})


def test_add_request_non_object_raises():
    with pytest.raises(ValueError):
        AddRequest.from_dict(["magnet"])


def test_add_response_round_trip():
    response = AddResponse(id="abc123", status=Status.QUEUED, new=True)
    data = response.to_dict()
    assert data == {"id": "abc123", "status": "queued", "new": True}
    assert AddResponse.from_dict(data) == response


def test_action_request_reads_action():
    assert ActionRequest.from_dict({"action": "pause"}).action == "pause"


def test_error_response_to_dict():
    assert ErrorResponse("magnet is required").to_dict() == {"error": "magnet is required"}