"""Main entry point for the achievement-sync API server"""
import logging

import uvicorn

from achievement_sync.config import API_HOST, API_PORT, LOG_LEVEL, validate_config

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, LOG_LEVEL)
)

logger = logging.getLogger(__name__)


def main() -> None:
    """Main application entry point"""
    logger.info("Validating configuration...")
    validate_config()

    from achievement_sync.api.server import create_api_application

    app = create_api_application()
    logger.info(f"Starting API server on {API_HOST}:{API_PORT}")
    uvicorn.run(app, host=API_HOST, port=API_PORT, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
