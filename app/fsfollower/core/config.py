from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from fsfollower.core.errors import ConfigError


class ClientConfig(BaseModel):
    file_service_url: str = ""
    secret: str = ""
    timeout_sec: int = Field(default=30, ge=1, le=3600)


class FileConfig(BaseModel):
    # Local artifacts are written to <base>/<fileKey>.
    base: str = ""


class SyncConfig(BaseModel):
    # - standalone: passes are serialized by a process-local lock
    # - cluster: passes are serialized across replicas by a redis lock
    mode: Literal["standalone", "cluster"] = "standalone"
    # 0 means disabled; positive values are seconds between scheduled passes.
    poll_interval_sec: int = Field(default=5, ge=0, le=86400)
    fetch_limit: int = Field(default=30, ge=1, le=1000)
    lock_name: str = "fsf:sync:file"


class RedisConfig(BaseModel):
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: str = ""
    # Lease of the distributed lock, renewed before each event. A crashed holder frees it
    # after this many seconds.
    lock_timeout_sec: int = Field(default=300, ge=1)
    # 0 means fail fast when another replica holds the lock.
    blocking_timeout_sec: float = Field(default=0, ge=0)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str = ""


class DatabaseConfig(BaseModel):
    path: str = ""


class AppConfig(BaseModel):
    client: ClientConfig = Field(default_factory=ClientConfig)
    file: FileConfig = Field(default_factory=FileConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    web_bind_host: str = "127.0.0.1"
    web_port: int = 8766


PROJECT_ROOT = Path(os.environ.get("FSF_HOME") or Path.cwd())
RUNTIME_DIR = PROJECT_ROOT / "runtime"
DEFAULT_CONFIG_PATH = Path(os.environ.get("FSF_CONFIG") or PROJECT_ROOT / "config.yaml")
DEFAULT_CONFIG_TEMPLATE_PATH = PROJECT_ROOT / "config.yaml.example"
DEFAULT_LOG_FILE = RUNTIME_DIR / "service.log"
DEFAULT_DB_PATH = RUNTIME_DIR / "ledger.db"


def _apply_runtime_defaults(cfg: AppConfig) -> AppConfig:
    if not cfg.database.path:
        cfg.database.path = str(DEFAULT_DB_PATH)
    if not cfg.logging.file:
        cfg.logging.file = str(DEFAULT_LOG_FILE)
    return cfg


def missing_sync_settings(cfg: AppConfig) -> list[str]:
    missing: list[str] = []
    if not cfg.client.secret.strip():
        missing.append("client.secret")
    if not cfg.client.file_service_url.strip():
        missing.append("client.file_service_url")
    if not cfg.file.base.strip():
        missing.append("file.base")
    return missing


def require_sync_settings(cfg: AppConfig) -> None:
    missing = missing_sync_settings(cfg)
    if missing:
        raise ConfigError(f"missing_config: {', '.join(missing)}")


def redacted_dump(cfg: AppConfig) -> dict:
    data = cfg.model_dump()
    for section, key in (("client", "secret"), ("redis", "password")):
        if data[section].get(key):
            data[section][key] = "******"
    return data


def ensure_runtime_dirs(cfg: AppConfig):
    Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
    Path(cfg.database.path).parent.mkdir(parents=True, exist_ok=True)


def load_config(path: Path | None = None) -> AppConfig:
    import yaml

    path = path or DEFAULT_CONFIG_PATH
    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        if DEFAULT_CONFIG_TEMPLATE_PATH.exists():
            try:
                template_text = DEFAULT_CONFIG_TEMPLATE_PATH.read_text(encoding="utf-8")
                data = yaml.safe_load(template_text) or {}
                cfg = AppConfig.model_validate(data)
                path.write_text(template_text, encoding="utf-8")
            except Exception:
                cfg = AppConfig()
                path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
        else:
            cfg = AppConfig()
            path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
        cfg = _apply_runtime_defaults(cfg)
        ensure_runtime_dirs(cfg)
        return cfg

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        cfg = AppConfig.model_validate(data)
    except Exception as e:
        raise ConfigError(f"invalid_config: {path}: {e}") from e
    cfg = _apply_runtime_defaults(cfg)
    ensure_runtime_dirs(cfg)
    return cfg


def save_config(cfg: AppConfig, path: Path | None = None):
    import yaml

    path = path or DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
