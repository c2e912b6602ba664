"""
Entry point for the triple-helix API service.

Run with:
    uvicorn helix.api.main:app --reload --port 8200
    python main.py
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

import uvicorn

from config import get_settings

settings = get_settings()

if __name__ == "__main__":
    uvicorn.run(
        "helix.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
