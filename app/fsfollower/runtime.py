from __future__ import annotations

import threading
from typing import Callable

from fsfollower.core.config import AppConfig, load_config, require_sync_settings
from fsfollower.providers.file_service import (
    EventApplier,
    EventLedger,
    FileServiceClient,
    SyncEngine,
    build_exclusion,
)
from fsfollower.providers.file_service.db import init_db
from fsfollower.providers.file_service.exclusion import ExclusionProvider

_EXCLUSION_LOCK = threading.Lock()
# Engines are rebuilt per run from fresh config, the lock provider must outlive them.
_exclusions: dict[tuple, ExclusionProvider] = {}


def _exclusion_key(cfg: AppConfig) -> tuple:
    if cfg.sync.mode == "cluster":
        return ("cluster", cfg.sync.lock_name, cfg.redis.host, cfg.redis.port, cfg.redis.db)
    return ("standalone", cfg.sync.lock_name)


def get_exclusion(cfg: AppConfig) -> ExclusionProvider:
    key = _exclusion_key(cfg)
    with _EXCLUSION_LOCK:
        provider = _exclusions.get(key)
        if provider is None:
            provider = build_exclusion(cfg)
            _exclusions[key] = provider
        return provider


def build_client(cfg: AppConfig) -> FileServiceClient:
    return FileServiceClient(
        base_url=cfg.client.file_service_url,
        secret=cfg.client.secret,
        timeout=int(cfg.client.timeout_sec),
    )


def build_sync_engine(cfg: AppConfig | None = None) -> tuple[AppConfig, SyncEngine]:
    cfg = cfg or load_config()
    require_sync_settings(cfg)
    init_db(cfg.database.path)

    client = build_client(cfg)
    engine = SyncEngine(
        ledger=EventLedger(cfg.database.path),
        applier=EventApplier(client, cfg.file.base),
        client=client,
        exclusion=get_exclusion(cfg),
        fetch_limit=cfg.sync.fetch_limit,
    )
    return cfg, engine


def build_sync_runner(cfg: AppConfig | None = None, run_type: str = "scheduled") -> Callable[[], dict]:
    """Return the zero-argument "run one sync pass" entry point handed to schedulers."""
    _cfg, engine = build_sync_engine(cfg)

    def run() -> dict:
        return engine.run_once(run_type=run_type)

    return run
