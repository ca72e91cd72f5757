from pathlib import Path

import pytest

from fsfollower.core import config as config_module
from fsfollower.core.errors import ConfigError


def test_load_config_creates_from_template(monkeypatch, tmp_path: Path):
    template = tmp_path / "config.yaml.example"
    target = tmp_path / "config.yaml"
    runtime_dir = tmp_path / "runtime"
    template.write_text(
        "\n".join(
            [
                "client:",
                "  file_service_url: http://files.local:8080",
                "  secret: tpl_secret",
                "file:",
                "  base: /tmp/fsf_files",
                "sync:",
                "  mode: cluster",
                "logging:",
                f"  file: {runtime_dir / 'service.log'}",
                "database:",
                f"  path: {runtime_dir / 'ledger.db'}",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_TEMPLATE_PATH", template)
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    cfg = config_module.load_config(target)

    assert target.exists()
    assert cfg.client.file_service_url == "http://files.local:8080"
    assert cfg.client.secret == "tpl_secret"
    assert cfg.file.base == "/tmp/fsf_files"
    assert cfg.sync.mode == "cluster"


def test_load_config_creates_defaults_when_template_missing(monkeypatch, tmp_path: Path):
    target = tmp_path / "config.yaml"
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_TEMPLATE_PATH", tmp_path / "missing-template.yaml")
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    cfg = config_module.load_config(target)

    assert target.exists()
    assert cfg.sync.mode == "standalone"
    assert cfg.sync.fetch_limit == 30
    assert cfg.sync.lock_name == "fsf:sync:file"
    assert cfg.database.path == str(config_module.DEFAULT_DB_PATH)


def test_load_config_falls_back_when_template_invalid(monkeypatch, tmp_path: Path):
    template = tmp_path / "config.yaml.example"
    target = tmp_path / "config.yaml"
    template.write_text("client: [invalid\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_TEMPLATE_PATH", template)
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    cfg = config_module.load_config(target)

    assert target.exists()
    assert cfg.sync.mode == "standalone"


def test_load_config_rejects_invalid_existing_file(monkeypatch, tmp_path: Path):
    target = tmp_path / "config.yaml"
    target.write_text("sync:\n  mode: everywhere\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    with pytest.raises(ConfigError) as exc:
        config_module.load_config(target)
    assert "invalid_config" in str(exc.value)


def test_require_sync_settings_lists_every_missing_key():
    cfg = config_module.AppConfig()

    with pytest.raises(ConfigError) as exc:
        config_module.require_sync_settings(cfg)
    assert str(exc.value) == "missing_config: client.secret, client.file_service_url, file.base"

    cfg.client.secret = "s"
    cfg.client.file_service_url = "http://files.local"
    cfg.file.base = "/data"
    config_module.require_sync_settings(cfg)


def test_redacted_dump_masks_only_set_credentials():
    cfg = config_module.AppConfig()
    cfg.client.secret = "s3cret"

    data = config_module.redacted_dump(cfg)

    assert data["client"]["secret"] == "******"
    assert data["redis"]["password"] == ""
    assert cfg.client.secret == "s3cret"
