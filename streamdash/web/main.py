from __future__ import annotations

import logging

from fastapi import FastAPI

from streamdash.core.config import load_config
from streamdash.providers.lixstream.db import init_db
from streamdash.web.admin_api import router as admin_router
from streamdash.web.api import router as api_router

log = logging.getLogger(__name__)


def build_app() -> FastAPI:
    cfg = load_config()
    init_db(cfg.database.path)
    log.info("database ready path=%s", cfg.database.path)

    app = FastAPI(title="streamdash", version="0.1.0")
    for router in (api_router, admin_router):
        app.include_router(router)
    return app


def main():
    import uvicorn

    from streamdash.core.logging_setup import setup_logging

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
