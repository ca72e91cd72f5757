from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from fsfollower.core.config import (
    DEFAULT_CONFIG_PATH,
    load_config,
    missing_sync_settings,
    redacted_dump,
)
from fsfollower.core.errors import ConfigError, LedgerError
from fsfollower.core.logging_setup import setup_logging
from fsfollower.providers.file_service import EventLedger
from fsfollower.providers.file_service.db import init_db
from fsfollower.runtime import build_sync_engine

app = typer.Typer(add_completion=False)
console = Console()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dump(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


@app.command("config-show")
def config_show(path: Optional[Path] = typer.Option(None, "--path", help="Config file (default: config.yaml).")):
    """Show current config with credentials redacted."""
    cfg = load_config(path)
    _dump(redacted_dump(cfg))


@app.command("config-validate")
def config_validate(
    path: Optional[Path] = typer.Option(None, "--path", help="Config file (default: config.yaml)."),
    strict: bool = typer.Option(False, "--strict", help="Return non-zero when validation fails."),
):
    """Validate config and runtime prerequisites."""
    path = path or DEFAULT_CONFIG_PATH
    out: dict[str, Any] = {
        "ok": True,
        "checked_at": _now_iso(),
        "config_path": str(path),
        "checks": {
            "config_exists": path.exists(),
            "secret_configured": False,
            "file_service_url_configured": False,
            "file_base_configured": False,
            "file_base_exists": False,
            "poll_interval_valid": False,
            "database_ready": False,
        },
        "warnings": [],
        "errors": [],
    }

    try:
        cfg = load_config(path)
    except ConfigError as e:
        out["ok"] = False
        out["errors"].append(str(e))
        _dump(out)
        if strict:
            raise typer.Exit(2)
        return

    missing = missing_sync_settings(cfg)
    out["checks"]["secret_configured"] = "client.secret" not in missing
    out["checks"]["file_service_url_configured"] = "client.file_service_url" not in missing
    out["checks"]["file_base_configured"] = "file.base" not in missing
    for key in missing:
        out["errors"].append(f"missing_config: {key}")

    if cfg.file.base:
        out["checks"]["file_base_exists"] = Path(cfg.file.base).is_dir()
        if not out["checks"]["file_base_exists"]:
            out["warnings"].append(f"file_base_missing: {cfg.file.base} (created on first download)")

    poll_interval = int(cfg.sync.poll_interval_sec or 0)
    out["checks"]["poll_interval_valid"] = 0 <= poll_interval <= 86400
    if poll_interval == 0:
        out["warnings"].append("auto_sync_disabled: poll_interval_sec=0")

    if cfg.sync.mode == "cluster" and not cfg.redis.host:
        out["errors"].append("missing_config: redis.host (required in cluster mode)")

    try:
        init_db(cfg.database.path)
        out["checks"]["database_ready"] = True
    except LedgerError as e:
        out["errors"].append(str(e))

    out["ok"] = len(out["errors"]) == 0
    _dump(out)
    if strict and not out["ok"]:
        raise typer.Exit(2)


@app.command("init-db")
def init_db_cmd():
    """Create the event ledger tables if absent."""
    cfg = load_config()
    init_db(cfg.database.path)
    print(f"OK: ledger ready at {cfg.database.path}")


@app.command("run-once")
def run_once(
    run_type: str = typer.Option("manual_cli", "--run-type", help="sync run_type label."),
):
    """Run one sync pass under the configured lock and print summary JSON."""
    cfg = load_config()
    setup_logging(cfg.logging.level, cfg.logging.file)
    try:
        _cfg, engine = build_sync_engine(cfg)
    except ConfigError as e:
        _dump({"ok": False, "error": str(e)})
        raise typer.Exit(2)

    summary = engine.run_once(run_type=run_type)
    _dump(summary)
    if summary.get("fatal_error") or int(summary.get("errors", 0)) > 0:
        raise typer.Exit(2)


@app.command()
def status():
    """Show ledger and readiness summary."""
    cfg = load_config()
    init_db(cfg.database.path)
    ledger = EventLedger(cfg.database.path)
    counts = ledger.count_by_status()
    pending = ledger.find_fetched_events(limit=2)
    missing = missing_sync_settings(cfg)

    table = Table(title="file-service-follower status")
    table.add_column("Key")
    table.add_column("Value")
    table.add_row("config", str(DEFAULT_CONFIG_PATH))
    table.add_row("file_service_url", cfg.client.file_service_url or "(unset)")
    table.add_row("secret", "set" if cfg.client.secret else "(unset)")
    table.add_row("file_base", cfg.file.base or "(unset)")
    table.add_row("mode", cfg.sync.mode)
    table.add_row("lock_name", cfg.sync.lock_name)
    poll_interval = int(cfg.sync.poll_interval_sec or 0)
    table.add_row("auto_sync", "on" if poll_interval > 0 else "off")
    table.add_row("poll_interval_sec", str(poll_interval))
    table.add_row("last_event_id", str(ledger.find_last_event_id()))
    table.add_row("acked", str(counts.get("ACKED", 0)))
    table.add_row("fetched", str(counts.get("FETCHED", 0)))
    table.add_row("pending_event", str(pending[0].event_id) if pending else "-")
    table.add_row("missing_config", ", ".join(missing) if missing else "-")
    table.add_row("db", cfg.database.path)
    table.add_row("log", cfg.logging.file)
    table.add_row("web", f"http://{cfg.web_bind_host}:{cfg.web_port}")
    console.print(table)


@app.command()
def events(
    limit: int = typer.Option(20, "--limit", min=1),
    status: Optional[str] = typer.Option(None, "--status", help="FETCHED or ACKED."),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
):
    """List the most recent ledger records."""
    cfg = load_config()
    init_db(cfg.database.path)
    records = EventLedger(cfg.database.path).list_events(limit=limit, status=status)
    if json_output:
        _dump([r.model_dump(mode="json") for r in records])
        return

    table = Table(title="file_event_sync")
    for col in ("id", "event_id", "type", "file_key", "status", "fetch_time", "ack_time"):
        table.add_column(col)
    for r in records:
        table.add_row(
            str(r.id),
            str(r.event_id),
            r.event_type,
            r.file_key,
            r.sync_status.value,
            r.fetch_time or "-",
            r.ack_time or "-",
        )
    console.print(table)


@app.command()
def serve():
    """Run the web API and the periodic sync scheduler."""
    from fsfollower.web.main import main as web_main

    try:
        web_main()
    except ConfigError as e:
        _dump({"ok": False, "error": str(e)})
        raise typer.Exit(2)


def main():
    app()


if __name__ == "__main__":
    main()
