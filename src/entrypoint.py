from __future__ import annotations

import logging

import uvicorn

from .config import load_config
from .index import create_app
from .logging_config import configure_logging

logger = logging.getLogger(__name__)


def main() -> None:
    config = load_config()
    configure_logging(config.logs.level)
    logger.info(f"Starting grades service on port {config.server.port}")
    uvicorn.run(create_app(config), host="0.0.0.0", port=config.server.port, log_config=None)


if __name__ == "__main__":
    main()
