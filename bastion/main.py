"""Bastion — failed-logon detection and firewall auto-remediation.

FastAPI entry point: the lifespan creates the tables, wires the service and
starts the periodic Logon Guard.
"""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from .api.routes import router
from .config import get_config
from .database import close_engine, create_tables, get_session_factory
from .dependencies import set_service
from .middleware.error_handler import register_error_handlers
from .modules.logon_guard import LogonGuard
from .service import BastionService
from .utils.logging import get_logger, setup_logging

config = get_config()
setup_logging(
    debug=config.debug,
    log_dir=config.log_dir,
    log_max_bytes=config.log_max_bytes,
    log_backup_count=config.log_backup_count,
)
logger = get_logger("bastion.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("bastion_starting", host=config.host, port=config.port)

    await create_tables(config)
    service = BastionService(config, get_session_factory(config))
    guard = LogonGuard.from_config(service, config)
    set_service(service, guard)
    await guard.start()

    yield

    await guard.stop()
    set_service(None)
    await close_engine()
    logger.info("bastion_stopped")


app = FastAPI(
    title="BASTION",
    description="Failed-logon detection and firewall auto-remediation",
    version="1.0.0",
    lifespan=lifespan,
)

register_error_handlers(app)
app.include_router(router)


def main():
    """Run the Bastion server."""
    uvicorn.run(
        "bastion.main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )


if __name__ == "__main__":
    main()
