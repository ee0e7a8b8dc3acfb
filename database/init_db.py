import logging

from database.database import create_tables, engine

logger = logging.getLogger(__name__)


def init_db(bind=None) -> None:
    """Create every table that does not exist yet."""
    target = bind or engine
    logger.info(f"Creating tables on {target.url.render_as_string(hide_password=True)}")
    create_tables(target)
    logger.info("Tables ready")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    init_db()
