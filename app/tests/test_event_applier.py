from pathlib import Path

import pytest

from fsfollower.core.errors import ApplyError, TransportError
from fsfollower.providers.file_service.applier import EventApplier, resolve_file_path
from fsfollower.providers.file_service.models import EventType

from conftest import make_info


def _applier(gateway, file_base: Path) -> EventApplier:
    return EventApplier(gateway, str(file_base))


def test_resolve_file_path_joins_base_and_key(tmp_path: Path):
    assert resolve_file_path(str(tmp_path), "abc-123") == tmp_path / "abc-123"


@pytest.mark.parametrize("bad_key", ["", ".", "..", "../etc/passwd", "a/b", "a\\b"])
def test_resolve_file_path_rejects_keys_escaping_base(tmp_path: Path, bad_key: str):
    with pytest.raises(ApplyError):
        resolve_file_path(str(tmp_path), bad_key)


def test_added_file_is_downloaded(gateway, file_base: Path):
    gateway.add_file("k1", b"hello")

    _applier(gateway, file_base).apply(1, "k1", EventType.ADDED)

    assert (file_base / "k1").read_bytes() == b"hello"


def test_added_file_overwrites_partial_artifact(gateway, file_base: Path):
    (file_base / "k1").write_bytes(b"partial garbage from a crashed download")
    gateway.add_file("k1", b"full")

    _applier(gateway, file_base).apply(1, "k1", EventType.ADDED)

    assert (file_base / "k1").read_bytes() == b"full"


def test_added_dir_creates_nothing(gateway, file_base: Path):
    gateway.add_file("d1", b"", file_type="DIR")

    _applier(gateway, file_base).apply(1, "d1", EventType.ADDED)

    assert not (file_base / "d1").exists()
    assert ("download", "d1") not in gateway.calls


def test_added_but_remotely_deleted_file_is_skipped(gateway, file_base: Path):
    gateway.infos["k1"] = make_info(is_deleted=True)

    _applier(gateway, file_base).apply(1, "k1", EventType.ADDED)

    assert not (file_base / "k1").exists()


def test_absent_remote_record_touches_nothing(gateway, file_base: Path):
    (file_base / "k1").write_bytes(b"keep")

    _applier(gateway, file_base).apply(2, "k1", EventType.DELETED)

    assert (file_base / "k1").read_bytes() == b"keep"
    assert gateway.calls == [("info", "k1")]


def test_delete_removes_present_artifact(gateway, file_base: Path):
    gateway.add_file("k1", b"x")
    (file_base / "k1").write_bytes(b"x")

    _applier(gateway, file_base).apply(2, "k1", EventType.DELETED)

    assert not (file_base / "k1").exists()


def test_delete_of_absent_artifact_succeeds(gateway, file_base: Path):
    gateway.add_file("k1", b"x")

    _applier(gateway, file_base).apply(2, "k1", "DELETED")

    assert not (file_base / "k1").exists()


def test_unknown_event_type_is_a_no_op(gateway, file_base: Path):
    gateway.add_file("k1", b"x")

    _applier(gateway, file_base).apply(3, "k1", "RENAMED")

    assert not (file_base / "k1").exists()
    assert ("download", "k1") not in gateway.calls


def test_updated_event_redownloads_content(gateway, file_base: Path):
    (file_base / "k1").write_bytes(b"v1")
    gateway.add_file("k1", b"v2")

    _applier(gateway, file_base).apply(4, "k1", EventType.UPDATED)

    assert (file_base / "k1").read_bytes() == b"v2"


def test_applying_events_twice_gives_the_same_state(gateway, file_base: Path):
    gateway.add_file("k1", b"one")
    gateway.add_file("k2", b"two")
    gateway.add_file("d1", b"", file_type="DIR")
    sequence = [
        (1, "k1", EventType.ADDED),
        (2, "k2", EventType.ADDED),
        (3, "d1", EventType.ADDED),
        (4, "k1", EventType.DELETED),
    ]
    applier = _applier(gateway, file_base)

    for event in sequence:
        applier.apply(*event)
    once = {p.name: p.read_bytes() for p in file_base.iterdir()}
    for event in sequence:
        applier.apply(*event)
    twice = {p.name: p.read_bytes() for p in file_base.iterdir()}

    assert once == twice == {"k2": b"two"}


def test_download_failure_propagates_transport_error(gateway, file_base: Path):
    gateway.add_file("k1", b"x")
    gateway.fail_download.add("k1")

    with pytest.raises(TransportError):
        _applier(gateway, file_base).apply(1, "k1", EventType.ADDED)


def test_unwritable_base_raises_apply_error(gateway, tmp_path: Path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    gateway.add_file("k1", b"x")

    with pytest.raises(ApplyError):
        EventApplier(gateway, str(blocker)).apply(1, "k1", EventType.ADDED)


def test_invalid_key_is_rejected_before_writing(gateway, file_base: Path):
    gateway.add_file("../escape", b"x")

    with pytest.raises(ApplyError):
        _applier(gateway, file_base).apply(1, "../escape", EventType.ADDED)
    assert ("download", "../escape") not in gateway.calls
    assert list(file_base.parent.iterdir()) == [file_base]


def test_odd_key_is_noop_for_unknown_type(gateway, file_base: Path):
    gateway.add_file("dir/sub", b"x")

    _applier(gateway, file_base).apply(1, "dir/sub", "MOVED")

    assert gateway.calls == [("info", "dir/sub")]
    assert list(file_base.iterdir()) == []


def test_odd_key_is_noop_when_remote_record_absent(gateway, file_base: Path):
    _applier(gateway, file_base).apply(1, "../escape", EventType.DELETED)

    assert gateway.calls == [("info", "../escape")]
    assert list(file_base.iterdir()) == []
