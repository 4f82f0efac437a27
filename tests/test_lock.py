import pytest

from tubevault.core.lock import (
    AlreadyRunning,
    InstanceLock,
    InstanceNotReady,
    InstanceNotRunning,
    MalformedLockfile,
    ensure_tty_running_and_read_port,
    is_instance_running,
    parse_record,
    read_record_without_lock,
)


def test_second_acquire_fails_while_held(tmp_path):
    path = tmp_path / "instance.lock"
    with InstanceLock.acquire(path):
        with pytest.raises(AlreadyRunning):
            InstanceLock.acquire(path)


def test_release_allows_reacquire(tmp_path):
    path = tmp_path / "instance.lock"
    lock = InstanceLock.acquire(path)
    lock.release()
    assert not lock.held
    with InstanceLock.acquire(path) as again:
        assert again.held


def test_acquire_does_not_truncate_existing_record(tmp_path):
    path = tmp_path / "instance.lock"
    path.write_text("123\n4567")
    with InstanceLock.acquire(path):
        assert path.read_text() == "123\n4567"


def test_write_record_replaces_contents(tmp_path):
    path = tmp_path / "instance.lock"
    path.write_text("999999\n65535\ntrailing")
    with InstanceLock.acquire(path) as lock:
        lock.write_record(42, 0)
        assert path.read_text() == "42\n0"
        lock.write_record(42, 8080)
        assert path.read_text() == "42\n8080"


def test_with_locked_file_after_release_raises(tmp_path):
    lock = InstanceLock.acquire(tmp_path / "instance.lock")
    lock.release()
    with pytest.raises(Exception):
        lock.with_locked_file(lambda handle: handle.read())


def test_is_instance_running_probe(tmp_path):
    path = tmp_path / "instance.lock"
    assert not is_instance_running(path)
    with InstanceLock.acquire(path):
        assert is_instance_running(path)
    assert not is_instance_running(path)


@pytest.mark.parametrize("contents", ["", "\n8080", "abc\n8080", "12", "12\n", "12\nport", "12\n70000"])
def test_parse_record_rejects_malformed(contents):
    with pytest.raises(MalformedLockfile):
        parse_record(contents)


def test_parse_record_warns_on_extra_lines(caplog):
    assert parse_record("12\n8080\nextra") == (12, 8080)
    assert "Malformed lockfile" in caplog.text


def test_read_record_retries_while_port_is_zero(tmp_path):
    path = tmp_path / "instance.lock"
    path.write_text("12\n0")
    sleeps = []

    def fake_sleep(seconds):
        sleeps.append(seconds)
        if len(sleeps) == 2:
            path.write_text("12\n8080")

    assert read_record_without_lock(path, attempts=4, delay=0.2, sleep=fake_sleep) == (12, 8080)
    assert sleeps == [0.2, 0.2]


def test_read_record_gives_up_after_last_attempt(tmp_path):
    path = tmp_path / "instance.lock"
    path.write_text("12\n0")
    sleeps = []
    with pytest.raises(InstanceNotReady, match="did the tty instance crash"):
        read_record_without_lock(path, attempts=4, delay=0.2, sleep=sleeps.append)
    assert len(sleeps) == 3


def test_ensure_running_requires_a_holder(tmp_path):
    path = tmp_path / "instance.lock"
    path.write_text("12\n8080")
    with pytest.raises(InstanceNotRunning):
        ensure_tty_running_and_read_port(path)


def test_ensure_running_reads_port_from_holder(tmp_path):
    path = tmp_path / "instance.lock"
    with InstanceLock.acquire(path) as lock:
        lock.write_record(12, 8080)
        assert ensure_tty_running_and_read_port(path, sleep=lambda _: None) == 8080
