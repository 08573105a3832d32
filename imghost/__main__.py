import logging

import uvicorn

from imghost.core.config import get_settings
from imghost.main import create_app

logger = logging.getLogger("imghost")


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=settings.log_level.upper(),
    )

    logger.info("Starting server at %s", settings.bind_address)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
