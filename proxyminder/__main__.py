"""
Entry point for running proxyminder via `python -m proxyminder`.

Starts the FastAPI server with uvicorn.
"""

import uvicorn

from .config import config


def main():
    """Run the proxyminder server."""
    uvicorn.run(
        "proxyminder.main:app",
        host=config.host,
        port=config.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
