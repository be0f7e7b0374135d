"""
ASGI entry point for the shop bot.

    uvicorn shop_bot.main:app --reload
"""

# Load environment variables FIRST, before any module imports that need them
from dotenv import load_dotenv
load_dotenv()

import logging

from .app_factory import create_app
from .db import init_db
from .logging_config import setup_logging

# Configure logging at module load time
setup_logging()

logger = logging.getLogger(__name__)

init_db()
app = create_app()


if __name__ == "__main__":
    import os

    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    logger.info("Starting shop bot on port %d", port)
    uvicorn.run(app, host="0.0.0.0", port=port)
