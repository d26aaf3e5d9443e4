"""Uvicorn entry point for the NowPlaying API"""

import uvicorn

from .app import create_app
from .core.config import get_settings

app = create_app()


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
