import os

import uvicorn

from ipgeo.logger import build_log_config
from ipgeo.settings import get_settings


def main() -> None:
    """Run the FastAPI application with uvicorn."""
    uvicorn.run(
        "ipgeo.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "true").lower() == "true",
        log_config=build_log_config(get_settings().log_level),
    )


if __name__ == "__main__":
    main()
