"""Run the proxyminder service."""

import uvicorn

from proxyminder.config import config

if __name__ == "__main__":
    uvicorn.run(
        "proxyminder.main:app",
        host=config.host,
        port=config.port,
        reload=False,
    )
