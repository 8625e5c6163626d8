import json

from fund_watchlist.local_store import LocalListStore
from fund_watchlist.models import RemoteCredentials


def test_load_missing_file_is_empty(tmp_path):
    assert LocalListStore(tmp_path / "nope.json").load() == []


def test_save_then_load(tmp_path):
    store = LocalListStore(tmp_path / "sub" / "storage.json")
    store.save(["000001", "110022"])
    assert store.load() == ["000001", "110022"]


def test_load_corrupt_file_is_empty(tmp_path):
    path = tmp_path / "storage.json"
    path.write_text("{not json", encoding="utf-8")
    assert LocalListStore(path).load() == []


def test_load_ignores_non_list_and_duplicates(tmp_path):
    path = tmp_path / "storage.json"
    path.write_text(json.dumps({"fund_list": "000001"}), encoding="utf-8")
    assert LocalListStore(path).load() == []

    path.write_text(json.dumps({"fund_list": ["000001", 5, "000001", "000002"]}), encoding="utf-8")
    assert LocalListStore(path).load() == ["000001", "000002"]


def test_credentials_kept_beside_fund_list(tmp_path):
    store = LocalListStore(tmp_path / "storage.json")
    store.save(["000001"])
    store.save_credentials(RemoteCredentials(token="t", repo="me/funds"))

    assert store.load() == ["000001"]
    creds = store.load_credentials()
    assert creds == RemoteCredentials(token="t", repo="me/funds", path="data/funds.json")


def test_load_credentials_absent(tmp_path):
    assert LocalListStore(tmp_path / "storage.json").load_credentials() is None


def test_save_failure_does_not_raise(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    store = LocalListStore(blocker / "storage.json")
    store.save(["000001"])
    assert store.load() == []


def test_save_replaces_file_without_leftover_temp(tmp_path):
    path = tmp_path / "storage.json"
    store = LocalListStore(path)
    store.save_credentials(RemoteCredentials(token="t", repo="me/funds"))
    store.save(["000001"])

    assert sorted(p.name for p in tmp_path.iterdir()) == ["storage.json"]
    assert json.loads(path.read_text(encoding="utf-8"))["github_config"]["repo"] == "me/funds"


def test_interrupted_write_keeps_previous_contents(tmp_path, monkeypatch):
    path = tmp_path / "storage.json"
    store = LocalListStore(path)
    store.save(["000001"])

    def fail_replace(self, target):
        raise OSError("disk full")

    monkeypatch.setattr(type(path), "replace", fail_replace)
    store.save(["000002"])
    monkeypatch.undo()

    assert store.load() == ["000001"]
