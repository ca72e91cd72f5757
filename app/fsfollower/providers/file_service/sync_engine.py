from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from fsfollower.core.errors import ConfigError, LedgerError
from fsfollower.providers.file_service.applier import EventApplier
from fsfollower.providers.file_service.exclusion import ExclusionProvider, LocalExclusion
from fsfollower.providers.file_service.ledger import EventLedger
from fsfollower.providers.file_service.models import EventType, SyncStatus

FETCH_LIMIT = 30

logger = logging.getLogger("sync")


class PassState(str, Enum):
    RECOVERING = "recovering"
    DRAINING = "draining"
    IDLE = "idle"


class SyncEngine:
    """Replays remote file events onto local disk, in order, one event at a time.

    One pass first re-applies the single un-acked event a crash may have left behind,
    then polls for events after the highest id in the ledger and persists, applies and
    acks each of them before touching the next. The first failure ends the pass and
    leaves the ledger where it was, so the next pass retries the same event.
    """

    def __init__(
        self,
        ledger: EventLedger,
        applier: EventApplier,
        client,
        exclusion: Optional[ExclusionProvider] = None,
        fetch_limit: int = FETCH_LIMIT,
    ):
        self.ledger = ledger
        self.applier = applier
        self.client = client
        self.exclusion = exclusion or LocalExclusion()
        self.fetch_limit = fetch_limit

    def run_once(self, run_type: str = "scheduled") -> dict:
        acquired, summary = self.exclusion.run_exclusive(lambda: self.run_pass(run_type=run_type))
        if not acquired:
            return {
                "run_type": run_type,
                "skipped": True,
                "reason": "lock_unavailable",
                "lock_name": getattr(self.exclusion, "name", ""),
                "errors": 0,
            }
        return summary

    def run_pass(self, run_type: str = "scheduled") -> dict:
        summary: dict = {
            "run_id": None,
            "run_type": run_type,
            "skipped": False,
            "state": PassState.RECOVERING.value,
            "failed_state": None,
            "recovered_event_id": None,
            "polled": 0,
            "applied": 0,
            "duplicates": 0,
            "poll_offset": None,
            "last_event_id": None,
            "failed_event_id": None,
            "errors": 0,
        }

        try:
            summary["run_id"] = self.ledger.start_run(run_type)
            self._recover(summary)
            summary["state"] = PassState.DRAINING.value
            self._drain(summary)
            summary["state"] = PassState.IDLE.value
        except ConfigError:
            self._finish_run(summary, "failed")
            raise
        except Exception as e:
            summary["errors"] += 1
            summary["failed_state"] = summary["state"]
            summary["fatal_error"] = str(e)
            summary["error_type"] = type(e).__name__
            logger.error(
                "pass_failed state=%s event_id=%s offset=%s error=%s",
                summary["failed_state"],
                summary["failed_event_id"],
                summary["poll_offset"],
                e,
            )
            self._finish_run(summary, "failed")
            return summary

        self._finish_run(summary, "success")
        logger.info(
            "pass_finished recovered=%s applied=%s duplicates=%s last_event_id=%s",
            summary["recovered_event_id"],
            summary["applied"],
            summary["duplicates"],
            summary["last_event_id"],
        )
        return summary

    def _finish_run(self, summary: dict, status: str) -> None:
        if summary["run_id"] is None:
            return
        try:
            self.ledger.finish_run(summary["run_id"], status, summary)
        except LedgerError as e:
            logger.error("finish_run_failed run_id=%s error=%s", summary["run_id"], e)

    def _recover(self, summary: dict) -> None:
        record = self.ledger.find_last_fetched_event()
        if record is None:
            logger.debug("no_unacked_event")
            return

        summary["failed_event_id"] = record.event_id
        logger.info("recovering_unacked_event event_id=%s file_key=%s", record.event_id, record.file_key)
        self.exclusion.keepalive()
        self.applier.apply(record.event_id, record.file_key, EventType.parse(record.event_type))
        self.ledger.ack_event(record.id)
        summary["failed_event_id"] = None
        summary["recovered_event_id"] = record.event_id

    def _drain(self, summary: dict) -> None:
        while True:
            last_event_id = self.ledger.find_last_event_id()
            summary["last_event_id"] = last_event_id
            logger.debug("polling_events after=%s limit=%s", last_event_id, self.fetch_limit)
            summary["poll_offset"] = last_event_id
            events = self.client.poll_events(last_event_id, self.fetch_limit)
            summary["poll_offset"] = None

            if not events:
                return
            summary["polled"] += len(events)

            for event in sorted(events, key=lambda ev: ev.event_id):
                summary["failed_event_id"] = event.event_id
                self._persist_apply_ack(event, summary)
                summary["failed_event_id"] = None
                summary["last_event_id"] = max(summary["last_event_id"] or 0, event.event_id)

            if self.ledger.find_last_event_id() <= last_event_id:
                # The file-service keeps answering with events we already hold.
                logger.warning("poll_not_advancing after=%s returned=%s", last_event_id, len(events))
                return

    def _persist_apply_ack(self, event, summary: dict) -> None:
        # A lost lease aborts the pass before the ledger is touched.
        self.exclusion.keepalive()
        logger.info("handling_event event_id=%s type=%s file_key=%s", event.event_id, event.type, event.file_key)
        if not self.ledger.save_event(event):
            summary["duplicates"] += 1

        record = self.ledger.get_by_event_id(event.event_id)
        if record is None:
            raise LedgerError(f"event_not_persisted: event_id={event.event_id}")
        if record.sync_status is SyncStatus.ACKED:
            logger.info("event_already_acked event_id=%s", event.event_id)
            return

        self.applier.apply(record.event_id, record.file_key, EventType.parse(record.event_type))
        self.ledger.ack_event(record.id)
        summary["applied"] += 1
        logger.info("event_acked event_id=%s", event.event_id)
