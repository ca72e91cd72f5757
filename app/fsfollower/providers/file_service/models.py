from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class EventType(str, Enum):
    ADDED = "UPLOADED"
    DELETED = "DELETED"
    UPDATED = "UPDATED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, raw: object) -> "EventType":
        value = str(raw or "").strip().upper()
        for member in cls:
            if member is not cls.UNKNOWN and member.value == value:
                return member
        return cls.UNKNOWN


class FileType(str, Enum):
    FILE = "FILE"
    DIR = "DIR"


class SyncStatus(str, Enum):
    # event is persisted, but not yet applied and acked
    FETCHED = "FETCHED"
    ACKED = "ACKED"


class FileEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event_id: int = Field(validation_alias=AliasChoices("eventId", "event_id", "Id", "id"))
    type: Optional[str] = None
    file_key: str = Field(validation_alias=AliasChoices("fileKey", "file_key", "FileKey"))
    create_time: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("createTime", "create_time")
    )

    @property
    def event_type(self) -> EventType:
        return EventType.parse(self.type)


class FileInfo(BaseModel):
    """Remote file record; read-only on this side."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    uuid: Optional[str] = None
    size_in_bytes: Optional[int] = Field(default=None, validation_alias=AliasChoices("sizeInBytes", "size_in_bytes"))
    is_deleted: bool = Field(default=False, validation_alias=AliasChoices("isDeleted", "is_deleted"))
    file_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("fileType", "file_type"))
    parent_file: Optional[str] = Field(default=None, validation_alias=AliasChoices("parentFile", "parent_file"))
    uploader_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("uploaderId", "uploader_id"))
    uploader_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("uploaderName", "uploader_name"))
    user_group: Optional[int] = Field(default=None, validation_alias=AliasChoices("userGroup", "user_group"))

    @property
    def is_dir(self) -> bool:
        return (self.file_type or "").upper() == FileType.DIR.value


class LedgerRecord(BaseModel):
    id: int
    event_id: int
    file_key: str
    event_type: str
    sync_status: SyncStatus
    fetch_time: Optional[str] = None
    ack_time: Optional[str] = None
    create_time: Optional[str] = None
    create_by: Optional[str] = None
    update_time: Optional[str] = None
    update_by: Optional[str] = None
    is_del: int = 0
