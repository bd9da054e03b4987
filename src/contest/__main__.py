import uvicorn

from contest.config import ContestConfig
from contest.endpoints import create_app
from contest.service import ContestService
from core.log import configure_logging, get_logger

logger = get_logger(__name__)


def main():
    config = ContestConfig()
    if config.log_file:
        configure_logging(config.log_file)

    service = ContestService(config)
    app = create_app(service)

    host = config.settings.get("host")
    port = int(config.settings.get("port"))
    logger.info("Starting Design Contest API on %s:%s", host, port)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
