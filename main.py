import structlog
import uvicorn

from src.api.app import create_app
from src.config.settings import load_config
from src.logging_config import configure_logging

if __name__ == "__main__":
    config = load_config()
    configure_logging(config.logging.level, json_output=config.logging.json)
    structlog.get_logger("main").info("Starting store directory API", host=config.api.host, port=config.api.port)
    try:
        uvicorn.run(create_app(config), host=config.api.host, port=config.api.port, log_config=None)
    except (KeyboardInterrupt, SystemExit):
        pass
