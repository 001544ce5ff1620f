"""
Process entry point: ``python -m src`` or the ``warden`` console script.

Runs the FastAPI app under uvicorn; the lifespan starts the Discord
gateway alongside it.
"""

import uvicorn

from src.config.settings import get_settings


def main() -> None:
    settings = get_settings()
    # log_config=None leaves logging to configure_logging() in the lifespan
    uvicorn.run("src.api.main:app", host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
