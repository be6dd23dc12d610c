"""API server entry point for python -m vidorch.api"""
import logging

import uvicorn
from vidorch.config import settings

if __name__ == "__main__":
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "vidorch.api.app:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )
