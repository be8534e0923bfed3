"""Main entry point for the HabitQuest API server"""
import logging
import uvicorn

from habitquest import config

logger = logging.getLogger(__name__)


def main() -> None:
    """Run the API server (startup and shutdown happen in the app lifespan)"""
    logger.info(f"Starting HabitQuest API on {config.API_HOST}:{config.API_PORT}")
    uvicorn.run(
        "habitquest.api.server:app",
        host=config.API_HOST,
        port=config.API_PORT,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
