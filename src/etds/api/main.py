"""ETDS API service entry point.

This module provides the application instance for ASGI servers (uvicorn)
and a run() function for direct execution.
"""

import logging

from etds.api import create_app
from etds.core.settings import get_settings_safe

logger = logging.getLogger(__name__)

# This is what uvicorn references: etds.api.main:app
app = create_app(get_settings_safe())


def run() -> None:
    """Run the API server using uvicorn.

    This function is called by the etds-api console script
    defined in pyproject.toml.
    """
    import uvicorn

    from etds.core.settings import get_settings

    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logger.info("Starting ETDS API on %s:%d", settings.api_host, settings.api_port)

    uvicorn.run(
        "etds.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


if __name__ == "__main__":
    run()
