"""Run the gateway with uvicorn: ``python -m kv_gateway``."""

import logging

import uvicorn
from dotenv import load_dotenv

from kv_gateway.api import create_app
from kv_gateway.config import load_config_from_env
from kv_gateway.logging_utils import setup_production_logging

logger = logging.getLogger(__name__)


def main() -> None:
    load_dotenv()

    config = load_config_from_env()
    setup_production_logging(level=config.logging.level, format=config.logging.format)

    logger.info(f"Serving KV gateway on {config.host}:{config.port}")
    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
