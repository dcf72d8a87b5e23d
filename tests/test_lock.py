from __future__ import annotations

import os
import sys
from pathlib import Path

import allure
import pytest

from jobwrap.lock import LockManager, _is_current_file
from jobwrap.primitives import try_lock, unlock

pytestmark = [
    allure.epic("Overlap Locking"),
    allure.feature("Lock Protocol"),
]


@pytest.fixture
def lock_path(tmp_path: Path) -> Path:
    return tmp_path / "lock"


def _alive(_pid: int) -> bool:
    return True


def _dead(_pid: int) -> bool:
    return False


def test_acquire_creates_lock_with_own_pid(lock_path: Path) -> None:
    manager = LockManager(lock_path, own_pid=1234, process_exists=_alive)

    acquisition = manager.acquire()

    assert acquisition.held is True
    assert acquisition.reclaimed is False
    assert manager.held is True
    assert lock_path.read_text("utf-8") == "1234\n"


def test_acquire_defaults_to_current_pid(lock_path: Path) -> None:
    manager = LockManager(lock_path)
    assert manager.acquire().held is True
    assert lock_path.read_text("utf-8") == f"{os.getpid()}\n"


def test_second_instance_fails_while_owner_is_alive(lock_path: Path) -> None:
    LockManager(lock_path, own_pid=111, process_exists=_alive).acquire()
    contender = LockManager(lock_path, own_pid=222, process_exists=_alive)

    acquisition = contender.acquire()

    assert acquisition.held is False
    assert acquisition.owner_pid == 111
    assert "pid 111" in acquisition.reason
    assert contender.held is False
    assert lock_path.read_text("utf-8") == "111\n"


def test_live_lock_from_real_process_is_not_reclaimed(lock_path: Path) -> None:
    lock_path.write_text(f"{os.getpid()}\n", "utf-8")

    acquisition = LockManager(lock_path, own_pid=999_999).acquire()

    assert acquisition.held is False
    assert lock_path.read_text("utf-8") == f"{os.getpid()}\n"


def test_stale_lock_is_reclaimed(lock_path: Path, dead_pid: int) -> None:
    lock_path.write_text(f"{dead_pid}\n", "utf-8")
    manager = LockManager(lock_path, own_pid=os.getpid())

    acquisition = manager.acquire()

    assert acquisition.held is True
    assert acquisition.reclaimed is True
    assert manager.held is True
    assert lock_path.read_text("utf-8") == f"{os.getpid()}\n"


def test_unparseable_lock_content_is_treated_as_stale(lock_path: Path) -> None:
    lock_path.write_text("not a pid", "utf-8")
    probed: list[int] = []

    def _probe(pid: int) -> bool:
        probed.append(pid)
        return True

    acquisition = LockManager(lock_path, own_pid=77, process_exists=_probe).acquire()

    assert acquisition.held is True
    assert acquisition.reclaimed is True
    assert probed == []
    assert lock_path.read_text("utf-8") == "77\n"


@pytest.mark.skipif(sys.platform == "win32", reason="flock semantics")
def test_acquire_fails_fast_while_another_instance_inspects_lock(lock_path: Path) -> None:
    lock_path.write_text("1\n", "utf-8")
    with lock_path.open("r+", encoding="utf-8") as reclaimer:
        assert try_lock(reclaimer)
        try:
            acquisition = LockManager(lock_path, own_pid=5, process_exists=_dead).acquire()
        finally:
            unlock(reclaimer)

    assert acquisition.held is False
    assert "another instance" in acquisition.reason
    assert lock_path.read_text("utf-8") == "1\n"


def test_only_one_of_two_reclaimers_wins(lock_path: Path) -> None:
    lock_path.write_text("1\n", "utf-8")
    first = LockManager(lock_path, own_pid=10, process_exists=lambda pid: pid != 1)
    second = LockManager(lock_path, own_pid=20, process_exists=lambda pid: pid != 1)

    assert first.acquire().held is True
    assert second.acquire().held is False
    assert lock_path.read_text("utf-8") == "10\n"


def test_update_owner_records_child_pid(lock_path: Path) -> None:
    manager = LockManager(lock_path, own_pid=10, process_exists=_alive)
    manager.acquire()

    manager.update_owner(4321)

    assert lock_path.read_text("utf-8") == "4321\n"


def test_update_owner_requires_held_lock(lock_path: Path) -> None:
    with pytest.raises(RuntimeError, match="not held"):
        LockManager(lock_path, own_pid=10).update_owner(11)


def test_release_deletes_lock_file(lock_path: Path) -> None:
    manager = LockManager(lock_path, own_pid=10, process_exists=_alive)
    manager.acquire()
    manager.update_owner(12)

    manager.release()

    assert not lock_path.exists()
    assert manager.held is False
    assert LockManager(lock_path, own_pid=13, process_exists=_alive).acquire().held is True


def test_release_without_acquire_leaves_foreign_lock(lock_path: Path) -> None:
    lock_path.write_text("1\n", "utf-8")
    manager = LockManager(lock_path, own_pid=2, process_exists=_alive)
    manager.acquire()

    manager.release()

    assert lock_path.read_text("utf-8") == "1\n"


def test_release_tolerates_missing_lock_file(lock_path: Path) -> None:
    manager = LockManager(lock_path, own_pid=10, process_exists=_alive)
    manager.acquire()
    lock_path.unlink()

    manager.release()

    assert manager.held is False


@pytest.mark.skipif(sys.platform == "win32", reason="inode identity")
def test_is_current_file_detects_replaced_lock(lock_path: Path) -> None:
    lock_path.write_text("1\n", "utf-8")
    with lock_path.open("r+", encoding="utf-8") as handle:
        assert _is_current_file(handle, lock_path) is True
        lock_path.unlink()
        assert _is_current_file(handle, lock_path) is False
        lock_path.write_text("2\n", "utf-8")
        assert _is_current_file(handle, lock_path) is False


def test_acquire_retries_when_lock_released_during_inspection(
    lock_path: Path,
    monkeypatch,
) -> None:
    lock_path.write_text("1\n", "utf-8")
    manager = LockManager(lock_path, own_pid=10, process_exists=_alive)
    original = manager._inspect_existing

    def _released_meanwhile():
        lock_path.unlink()
        return original()

    monkeypatch.setattr(manager, "_inspect_existing", _released_meanwhile)

    acquisition = manager.acquire()

    assert acquisition.held is True
    assert acquisition.reclaimed is False
    assert lock_path.read_text("utf-8") == "10\n"


def test_non_utf8_lock_content_is_treated_as_stale(lock_path: Path) -> None:
    lock_path.write_bytes(b"\xff\xfe\n")
    manager = LockManager(lock_path, own_pid=5, process_exists=_alive)

    acquisition = manager.acquire()

    assert acquisition.held is True
    assert acquisition.reclaimed is True
    assert lock_path.read_text("utf-8") == "5\n"

    manager.release()
    assert not lock_path.exists()


def test_out_of_range_owner_pid_is_treated_as_stale(lock_path: Path) -> None:
    lock_path.write_text("99999999999999999999999\n", "utf-8")

    acquisition = LockManager(lock_path, own_pid=5).acquire()

    assert acquisition.held is True
    assert acquisition.reclaimed is True
    assert lock_path.read_text("utf-8") == "5\n"
