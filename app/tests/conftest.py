from pathlib import Path

import pytest

from fsfollower.core.errors import TransportError
from fsfollower.providers.file_service.db import init_db
from fsfollower.providers.file_service.ledger import EventLedger
from fsfollower.providers.file_service.models import FileEvent, FileInfo


def make_event(event_id: int, event_type: str, file_key: str) -> FileEvent:
    return FileEvent(event_id=event_id, type=event_type, file_key=file_key)


def make_info(file_type: str = "FILE", is_deleted: bool = False, name: str = "a.txt") -> FileInfo:
    return FileInfo(name=name, uuid="uuid-" + name, file_type=file_type, is_deleted=is_deleted, size_in_bytes=3)


class FakeGateway:
    """In-memory file-service: an event log, file records and file bodies."""

    def __init__(self):
        self.events: list[FileEvent] = []
        self.infos: dict[str, FileInfo] = {}
        self.contents: dict[str, bytes] = {}
        self.batches: list[list[FileEvent]] | None = None
        self.fail_download: set[str] = set()
        self.poll_error: Exception | None = None
        self.calls: list[tuple] = []

    def poll_events(self, after_event_id: int, limit: int) -> list[FileEvent]:
        self.calls.append(("poll", after_event_id, limit))
        if self.poll_error is not None:
            raise self.poll_error
        if self.batches is not None:
            return self.batches.pop(0) if self.batches else []
        newer = sorted((e for e in self.events if e.event_id > after_event_id), key=lambda e: e.event_id)
        return newer[:limit]

    def fetch_file_info(self, file_key: str):
        self.calls.append(("info", file_key))
        return self.infos.get(file_key)

    def download_file(self, file_key: str, dest_path: str) -> None:
        self.calls.append(("download", file_key))
        if file_key in self.fail_download:
            raise TransportError(f"request_failed_status_502: download {file_key}")
        Path(dest_path).write_bytes(self.contents.get(file_key, b""))

    def add_file(self, file_key: str, content: bytes, file_type: str = "FILE") -> None:
        self.infos[file_key] = make_info(file_type=file_type, name=file_key)
        if file_type == "FILE":
            self.contents[file_key] = content


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def ledger(tmp_path: Path) -> EventLedger:
    db_path = str(tmp_path / "runtime" / "ledger.db")
    init_db(db_path)
    return EventLedger(db_path)


@pytest.fixture
def file_base(tmp_path: Path) -> Path:
    base = tmp_path / "files"
    base.mkdir()
    return base
