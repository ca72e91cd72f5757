from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from fsfollower.core.config import load_config, require_sync_settings
from fsfollower.providers.file_service.db import init_db
from fsfollower.web.api import router as api_router, start_scheduler, stop_scheduler


def build_app(with_scheduler: bool = True) -> FastAPI:
    cfg = load_config()
    if with_scheduler:
        # Missing credentials are fatal: refuse to start instead of failing every tick.
        require_sync_settings(cfg)
    init_db(cfg.database.path)

    @asynccontextmanager
    async def lifespan(_api: FastAPI):
        if with_scheduler:
            start_scheduler()
        try:
            yield
        finally:
            await stop_scheduler()

    api = FastAPI(title="file-service-follower", version="0.1.0", lifespan=lifespan)
    api.include_router(api_router)
    return api


def main():
    import uvicorn

    from fsfollower.core.logging_setup import setup_logging

    cfg = load_config()
    setup_logging(cfg.logging.level, cfg.logging.file)

    uvicorn.run(
        build_app(),
        host=cfg.web_bind_host,
        port=cfg.web_port,
        log_level=cfg.logging.level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
