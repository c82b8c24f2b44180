import json

import pytest

from billing.storage.counters import CounterCeilingReached, JsonCounterStore
from billing.storage.repo import DuplicateKeyError, JsonRepository, StaleRecordError


@pytest.fixture
def repo(tmp_path):
    return JsonRepository(tmp_path / "docs.json", entity_name="doc", unique=("number",), backup_enabled=False)


def test_add_assigns_id_and_enforces_unique_number(repo):
    rec = repo.add({"number": "INV-0325-101", "version": 1})
    assert rec["id"]
    with pytest.raises(DuplicateKeyError) as exc:
        repo.add({"number": "INV-0325-101", "version": 1})
    assert exc.value.field == "number"
    assert len(repo.list_all()) == 1


def test_update_checks_expected_version(repo):
    rec = repo.add({"number": "A-0125-101", "version": 1, "x": 1})
    updated = repo.update({**rec, "x": 2}, expected_version=1)
    assert updated["version"] == 2
    with pytest.raises(StaleRecordError):
        repo.update({**rec, "x": 3}, expected_version=1)
    assert repo.get_by_id(rec["id"])["x"] == 2


def test_update_unknown_record(repo):
    with pytest.raises(KeyError):
        repo.update({"id": "nope", "number": "X"})


def test_update_cannot_steal_another_number(repo):
    repo.add({"number": "A-0125-101", "version": 1})
    b = repo.add({"number": "A-0125-102", "version": 1})
    with pytest.raises(DuplicateKeyError):
        repo.update({**b, "number": "A-0125-101"})


def test_find_and_delete(repo):
    a = repo.add({"number": "A-0125-101"})
    repo.add({"number": "A-0125-102"})
    assert repo.find_one(lambda d: d["number"] == "A-0125-102")["number"] == "A-0125-102"
    assert len(repo.find(lambda d: d["number"].startswith("A-0125-1"))) == 2
    assert repo.delete(a["id"]) is True
    assert repo.delete(a["id"]) is False
    assert repo.get_by_id(a["id"]) is None


def test_corrupt_file_is_backed_up_and_read_as_empty(tmp_path):
    path = tmp_path / "docs.json"
    path.write_text("{not json", encoding="utf-8")
    repo = JsonRepository(path, backup_enabled=False)
    assert repo.list_all() == []
    assert (tmp_path / "docs.corrupt.json").exists()


def test_backups_are_rotated(tmp_path):
    repo = JsonRepository(tmp_path / "docs.json", backup_enabled=True, backup_keep=2)
    for i in range(5):
        repo.add({"number": f"A-0125-1{i:02d}"})
    backups = list(tmp_path.glob("docs.*.bak.json"))
    assert 0 < len(backups) <= 2
    assert len(json.loads((tmp_path / "docs.json").read_text(encoding="utf-8"))) == 5


def test_counter_increment_and_ceiling(tmp_path):
    store = JsonCounterStore(tmp_path / "counters.json")
    assert store.peek("INV-0325-1") == 0
    assert store.increment("INV-0325-1", ceiling=2) == 1
    assert store.increment("INV-0325-1", ceiling=2) == 2
    with pytest.raises(CounterCeilingReached):
        store.increment("INV-0325-1", ceiling=2)
    assert store.peek("INV-0325-1") == 2
    assert store.increment("INV-0325-1", seed=lambda: 50) == 3  # seed ignoré si le compteur existe


def test_counters_survive_a_new_instance(tmp_path):
    JsonCounterStore(tmp_path / "counters.json").increment("QTN-1125-1")
    assert JsonCounterStore(tmp_path / "counters.json").increment("QTN-1125-1") == 2
