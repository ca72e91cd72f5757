from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import requests
from pydantic import ValidationError

from fsfollower.core.errors import ConfigError, TransportError
from fsfollower.providers.file_service.models import FileEvent, FileInfo

POLL_EVENTS_PATH = "/open/api/sync/event/poll"
FILE_INFO_PATH = "/open/api/sync/file/info"
DOWNLOAD_PATH = "/open/api/sync/file/download"

logger = logging.getLogger("gateway")


class FileServiceClient:
    def __init__(self, base_url: str, secret: str, timeout: int = 30):
        self.base_url = (base_url or "").strip()
        self.secret = (secret or "").strip()
        self.timeout = timeout

    def _build_url(self, rel_url: str) -> str:
        if not self.base_url:
            raise ConfigError("missing_config: client.file_service_url")
        if not rel_url.startswith("/"):
            rel_url = "/" + rel_url
        return self.base_url.rstrip("/") + rel_url

    def _signed(self, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.secret:
            raise ConfigError("missing_config: client.secret")
        return {**payload, "secret": self.secret}

    def _post(self, rel_url: str, payload: dict[str, Any], **kwargs) -> requests.Response:
        url = self._build_url(rel_url)
        body = self._signed(payload)
        try:
            res = requests.post(url, json=body, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"request_failed: {rel_url}: {e}") from e
        if res.status_code >= 400:
            res.close()
            raise TransportError(f"request_failed_status_{res.status_code}: {rel_url}")
        return res

    def _check_data(self, res: requests.Response, rel_url: str) -> Any:
        try:
            payload = res.json()
        except ValueError as e:
            raise TransportError(f"invalid_response: {rel_url}: {e}") from e
        if not isinstance(payload, dict):
            raise TransportError(f"invalid_response: {rel_url}")
        if payload.get("error"):
            raise TransportError(f"file_service_error: {rel_url}: msg={payload.get('msg')}")
        return payload.get("data")

    def poll_events(self, after_event_id: int, limit: int) -> list[FileEvent]:
        res = self._post(POLL_EVENTS_PATH, {"eventId": int(after_event_id), "limit": int(limit)})
        data = self._check_data(res, POLL_EVENTS_PATH)
        if data is None:
            return []
        if not isinstance(data, list):
            raise TransportError(f"invalid_response_data: {POLL_EVENTS_PATH}")
        try:
            events = [FileEvent.model_validate(item) for item in data]
        except ValidationError as e:
            raise TransportError(f"invalid_event_payload: {e}") from e
        logger.debug("poll_events after=%s limit=%s returned=%s", after_event_id, limit, len(events))
        return events

    def fetch_file_info(self, file_key: str) -> FileInfo | None:
        """Return the remote record for ``file_key``, or None when the file-service has none."""
        res = self._post(FILE_INFO_PATH, {"fileKey": file_key})
        data = self._check_data(res, FILE_INFO_PATH)
        if not data:
            return None
        if not isinstance(data, dict):
            raise TransportError(f"invalid_response_data: {FILE_INFO_PATH}")
        try:
            return FileInfo.model_validate(data)
        except ValidationError as e:
            raise TransportError(f"invalid_file_info_payload: {e}") from e

    def download_file(self, file_key: str, dest_path: str) -> None:
        with self._post(DOWNLOAD_PATH, {"fileKey": file_key}, stream=True) as res:
            path = Path(dest_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            written = 0
            try:
                with path.open("wb") as fp:
                    for chunk in res.iter_content(chunk_size=1024 * 64):
                        if chunk:
                            fp.write(chunk)
                            written += len(chunk)
            except requests.RequestException as e:
                raise TransportError(f"download_interrupted: file_key={file_key}: {e}") from e
        logger.info("download_finished file_key=%s bytes=%s", file_key, written)
