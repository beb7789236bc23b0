# prize_engine/main.py
from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import uvicorn
from dotenv import load_dotenv


def _load_env() -> None:
    """Load .env from project root reliably."""
    root_env = Path(__file__).resolve().parents[1] / ".env"
    load_dotenv(dotenv_path=root_env)


async def _run_api_server(app, host: str, port: int, log: logging.Logger) -> None:
    while True:
        try:
            uv_cfg = uvicorn.Config(app=app, host=host, port=port, log_level="info", reload=False)
            server = uvicorn.Server(uv_cfg)
            log.info("Prize rules API: http://%s:%s", host, port)
            await server.serve()
            if server.should_exit:
                return
            log.warning("API server stopped; restarting in 3s")
            await asyncio.sleep(3)
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("API server crashed; restarting in 5s")
            await asyncio.sleep(5)


async def main() -> None:
    _load_env()
    # config reads the environment at import time, so import after load_dotenv
    from prize_engine import config
    from prize_engine.api import create_app
    from prize_engine.logging_setup import setup_logging
    from prize_engine.service import PrizeRuleService
    from prize_engine.store import RuleStore

    setup_logging()
    log = logging.getLogger("prize-engine")
    log.info("Starting prize engine")
    log.info(
        "Config flags: DB_PATH=%s ADMIN_API_KEY=%s API_PORT=%s LOG_LEVEL=%s",
        config.DB_PATH,
        "set" if config.ADMIN_API_KEY else "missing",
        config.API_PORT,
        config.LOG_LEVEL,
    )

    store = RuleStore(config.DB_PATH)
    store.init_db()
    app = create_app(PrizeRuleService(store))
    await _run_api_server(app, config.API_HOST or "0.0.0.0", config.API_PORT, log)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
