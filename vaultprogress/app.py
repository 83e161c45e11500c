"""
VaultProgress server

Serves the progress API over the store configured by DB_URL.

Run with: python -m vaultprogress.app
Or: uvicorn vaultprogress.app:app --reload
"""

import logging

from vaultprogress.api.routes import create_app
from vaultprogress.core.config import get_settings

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if get_settings().debug else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create app
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
