import json

import pytest

from invoicing.errors import DuplicateRecord, RecordNotFound, StoreError
from invoicing.models.client import Client
from invoicing.storage.json_repo import JsonRepository


@pytest.fixture
def repo(tmp_path):
    return JsonRepository(tmp_path / "rows.json", entity_name="row", backup_keep=2)


def test_creates_empty_table(tmp_path):
    path = tmp_path / "nested" / "t.json"
    JsonRepository(path)
    assert json.loads(path.read_text(encoding="utf-8")) == []


def test_add_get_update_delete(repo):
    rec = repo.add({"name": "a"})
    assert rec["id"]
    assert repo.get_by_id(rec["id"])["name"] == "a"

    merged = repo.update({"id": rec["id"], "extra": 1})
    assert merged == {"id": rec["id"], "name": "a", "extra": 1}

    assert repo.delete(rec["id"]) is True
    assert repo.delete(rec["id"]) is False
    assert repo.list_all() == []


def test_add_model(repo):
    c = Client(name="Acme", email="billing@acme.co.in")
    rec = repo.add(c)
    assert rec["id"] == c.id
    assert repo.find_one(lambda r: r["name"] == "Acme")["email"] == "billing@acme.co.in"


def test_duplicate_and_missing(repo):
    repo.add({"id": "x"})
    with pytest.raises(DuplicateRecord):
        repo.add({"id": "x"})
    with pytest.raises(RecordNotFound):
        repo.update({"id": "nope"})
    with pytest.raises(ValueError):
        repo.update({"name": "no key"})


def test_not_found_is_a_store_error():
    assert issubclass(RecordNotFound, StoreError)


def test_upsert(repo):
    repo.upsert({"id": "k", "v": 1})
    repo.upsert({"id": "k", "v": 2})
    assert repo.list_all() == [{"id": "k", "v": 2}]


def test_replace_and_delete_where(repo):
    repo.add({"id": "1", "invoice_id": "a"})
    repo.add({"id": "2", "invoice_id": "a"})
    repo.add({"id": "3", "invoice_id": "b"})

    repo.replace_where(lambda r: r["invoice_id"] == "a", [{"invoice_id": "a", "n": 1}])
    rows = repo.find(lambda r: r["invoice_id"] == "a")
    assert len(rows) == 1 and rows[0]["n"] == 1 and rows[0]["id"]

    assert repo.delete_where(lambda r: r["invoice_id"] == "b") == 1
    assert repo.delete_where(lambda r: r["invoice_id"] == "b") == 0
    assert len(repo.list_all()) == 1


def test_corrupt_file_is_set_aside(tmp_path):
    path = tmp_path / "rows.json"
    path.write_text("{not json", encoding="utf-8")
    repo = JsonRepository(path)
    assert repo.list_all() == []
    assert (tmp_path / "rows.corrupt.json").read_text(encoding="utf-8") == "{not json"


def test_backups_rotate_and_no_temp_files(repo, tmp_path):
    for i in range(6):
        repo.add({"id": str(i)})
    backups = list(tmp_path.glob("rows.*.bak.json"))
    assert 0 < len(backups) <= 2
    assert list(tmp_path.glob("*.tmp")) == []


def test_unchanged_write_is_skipped(tmp_path):
    repo = JsonRepository(tmp_path / "rows.json")
    repo.add({"id": "a"})
    before = list(tmp_path.glob("rows.*.bak.json"))
    repo.replace_where(lambda r: False, [])
    assert list(tmp_path.glob("rows.*.bak.json")) == before


def test_write_failure_raises_store_error(repo, monkeypatch):
    def boom(*a, **kw):
        raise OSError("disk full")

    monkeypatch.setattr("invoicing.storage.json_repo.tempfile.mkstemp", boom)
    with pytest.raises(StoreError):
        repo.add({"id": "z"})
