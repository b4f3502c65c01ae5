"""Entry point: serve the tracker API under uvicorn."""

import structlog
import uvicorn

from sai_tracker.api.app import create_app
from sai_tracker.config import Settings

logger = structlog.get_logger()


def run() -> None:
    settings = Settings()
    app = create_app(settings)
    logger.info("server_starting", host=settings.HOST, port=settings.PORT)
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
