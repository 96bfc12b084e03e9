import logging
import os

import uvicorn
from dotenv import load_dotenv

from infrastructure.config import load_config
from interfaces.web.app import create_web_app


load_dotenv()

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


def main() -> None:
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config()
    app = create_web_app(config)

    logging.getLogger(__name__).info(
        "Serving on http://%s:%d%s ...",
        config.listen_host,
        config.listen_port,
        config.url_prefix,
    )
    uvicorn.run(
        app,
        host=config.listen_host,
        port=config.listen_port,
        log_level=LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
