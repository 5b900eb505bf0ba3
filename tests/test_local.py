from funnel.daemon.manager import StorageRemover
from funnel.storages.local import LocalStorage


def test_delete_removes_torrent_directory(tmp_path):
    data = tmp_path / "abc" / "sub"
    data.mkdir(parents=True)
    (data / "file.bin").write_bytes(b"data")
    other = tmp_path / "def"
    other.mkdir()
    LocalStorage(tmp_path).delete_torrent_data("abc")
    assert not (tmp_path / "abc").exists()
    assert other.exists()


def test_delete_missing_is_noop(tmp_path):
    storage = LocalStorage(tmp_path)
    storage.delete_torrent_data("missing")
    assert list(tmp_path.iterdir()) == []


def test_delete_plain_file(tmp_path):
    (tmp_path / "abc").write_text("x")
    LocalStorage(tmp_path).delete_torrent_data("abc")
    assert not (tmp_path / "abc").exists()


def test_is_storage_remover(tmp_path):
    storage = LocalStorage(tmp_path)
    assert isinstance(storage, StorageRemover)
    assert storage.directory == tmp_path