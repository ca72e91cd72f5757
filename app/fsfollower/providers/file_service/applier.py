from __future__ import annotations

import logging
from pathlib import Path

from fsfollower.core.errors import ApplyError
from fsfollower.providers.file_service.models import EventType

logger = logging.getLogger("applier")


def resolve_file_path(base: str, file_key: str) -> Path:
    key = (file_key or "").strip()
    if not key or key in (".", "..") or "/" in key or "\\" in key or "\x00" in key:
        raise ApplyError(f"invalid_file_key: {file_key!r}")
    return Path(base) / key


class EventApplier:
    """Make the local artifact for one event match what the file-service currently holds.

    Metadata is always fetched again instead of trusted from an earlier attempt, and
    files are always truncated and downloaded in full: a crashed attempt may have left
    a partial file behind. The ledger is not touched here.
    """

    def __init__(self, client, file_base: str):
        self.client = client
        self.file_base = file_base

    def path_for(self, file_key: str) -> Path:
        return resolve_file_path(self.file_base, file_key)

    def apply(self, event_id: int, file_key: str, event_type: EventType | str) -> None:
        if not isinstance(event_type, EventType):
            event_type = EventType.parse(event_type)

        info = self.client.fetch_file_info(file_key)
        if info is None:
            # A later delete may have overtaken this event.
            logger.info("remote_file_absent event_id=%s file_key=%s", event_id, file_key)
            return

        if event_type is EventType.DELETED:
            self._delete_if_present(event_id, self.path_for(file_key))
            return

        if event_type not in (EventType.ADDED, EventType.UPDATED):
            logger.info("event_type_ignored event_id=%s type=%s", event_id, event_type.value)
            return

        if info.is_dir:
            logger.info("remote_file_is_dir event_id=%s file_key=%s", event_id, file_key)
            return

        if info.is_deleted:
            logger.info("remote_file_deleted event_id=%s file_key=%s", event_id, file_key)
            return

        # Only events that touch the disk need a usable key.
        path = self.path_for(file_key)
        self._truncate(event_id, path)
        try:
            self.client.download_file(file_key, str(path))
        except OSError as e:
            raise ApplyError(f"download_write_failed: event_id={event_id} path={path}: {e}") from e
        logger.info("file_materialized event_id=%s file_key=%s path=%s", event_id, file_key, path)

    def _truncate(self, event_id: int, path: Path) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fp = path.open("wb")
        except OSError as e:
            raise ApplyError(f"create_failed: event_id={event_id} path={path}: {e}") from e
        try:
            fp.close()
        except OSError as e:
            logger.warning("close_failed event_id=%s path=%s error=%s", event_id, path, e)

    def _delete_if_present(self, event_id: int, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            logger.info("delete_skipped_absent event_id=%s path=%s", event_id, path)
            return
        except OSError as e:
            raise ApplyError(f"delete_failed: event_id={event_id} path={path}: {e}") from e
        logger.info("file_deleted event_id=%s path=%s", event_id, path)
