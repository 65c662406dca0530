import logging
import sys
from pathlib import Path

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from marketplace.config.settings import settings
from marketplace.database.engine import Base, engine
from marketplace.database import models  # noqa: F401
from marketplace.middleware.request_logging import log_requests_middleware
from marketplace.routes.customer_routes import router as customer_router
from marketplace.routes.product_routes import router as product_router
from marketplace.utils.logger import get_logger


def _configure_logging() -> None:
    """Set up a structured, human-readable log format for the whole app.

    Format example::

        2026-02-19 10:33:19,123 | INFO     | marketplace.services.conversation_service:131 | handle_message — conversation=...
    """
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(log_level)
    # Avoid duplicate handlers if create_app() is called more than once (e.g. tests)
    if not root.handlers:
        root.addHandler(handler)
    else:
        for h in root.handlers:
            h.setFormatter(formatter)

    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("openai").setLevel(logging.WARNING)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def create_app() -> FastAPI:
    _configure_logging()

    logger = get_logger(__name__)
    logger.info(
        "Starting marketplace search backend — log_level=%s, db=%s",
        settings.log_level.upper(),
        settings.database_url,
    )

    app = FastAPI(title="Marketplace Search Backend", version="0.1.0")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables verified / created.")

    app.middleware("http")(log_requests_middleware)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(customer_router)
    logger.info("Customer search router mounted at /api/customer.")

    app.include_router(product_router)
    logger.info("Product search router mounted at /api/products.")

    media_dir = Path(settings.storage_dir)
    media_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/media", StaticFiles(directory=media_dir), name="media")
    logger.info("Uploads served from %s at /media.", media_dir.resolve())

    return app


app = create_app()
