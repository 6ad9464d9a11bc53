"""
Entrypoint for running the backend server: ``python entrypoint.py`` from ``backend/``.
"""
from giftcircle.core.config import settings
from giftcircle.main import app
import uvicorn

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level=settings.log_level.lower())
