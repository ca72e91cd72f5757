from fsfollower.providers.file_service.applier import EventApplier
from fsfollower.providers.file_service.client import FileServiceClient
from fsfollower.providers.file_service.exclusion import LocalExclusion, RedisExclusion, build_exclusion
from fsfollower.providers.file_service.ledger import EventLedger
from fsfollower.providers.file_service.sync_engine import SyncEngine

__all__ = [
    "EventApplier",
    "EventLedger",
    "FileServiceClient",
    "LocalExclusion",
    "RedisExclusion",
    "SyncEngine",
    "build_exclusion",
]
