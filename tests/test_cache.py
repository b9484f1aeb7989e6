import time

from directory_toolkit.cache.store import RunCache


def test_put_and_get(tmp_path):
    cache = RunCache(tmp_path)
    cache.put("collector:mailboxes:t1", {"mailboxes": [{"id": "m1"}]}, run_id="r1")

    assert cache.get("collector:mailboxes:t1") == {"mailboxes": [{"id": "m1"}]}
    assert cache.get("collector:mailboxes:t2") is None
    assert (tmp_path / "run_cache.db").exists()


def test_expired_entries_are_ignored_and_cleared(tmp_path, monkeypatch):
    cache = RunCache(tmp_path, ttl_hours=1)
    cache.put("k", [1, 2, 3], run_id="r1")

    later = time.time() + 2 * 3600
    monkeypatch.setattr(time, "time", lambda: later)

    assert cache.get("k") is None
    assert cache.clear_expired() == 1


def test_run_log(tmp_path):
    cache = RunCache(tmp_path)
    cache.start_run("r1", "reconcile-mailboxes")
    assert cache.get_run("r1")["status"] == "running"

    cache.complete_run("r1", "partial")
    run = cache.get_run("r1")
    assert run["command"] == "reconcile-mailboxes"
    assert run["status"] == "partial"
    assert run["completed_at"] is not None
    assert cache.get_run("missing") is None
