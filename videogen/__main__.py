"""Run the API server: ``python -m videogen``."""

import uvicorn

from videogen.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "videogen.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=settings.debug and settings.environment == "development",
    )


if __name__ == "__main__":
    main()
