"""Development entry point: ``python -m backend.run``.

Reloads on source changes unless PAGESTRUCT_ENV is set to something other than "development".
"""

import os

import uvicorn

from pagestruct.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "backend.main:app",
        host=os.environ.get("PAGESTRUCT_HOST", "127.0.0.1"),
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=os.environ.get("PAGESTRUCT_ENV", "development") == "development",
    )


if __name__ == "__main__":
    main()
