import logging

from config import config
from database import engine, Base
from kv import kv_store, ADMINS_KEY
import models  # noqa: F401  registers the tables on Base

logger = logging.getLogger("zee_index.init_db")


def sync_initial_admins() -> int:
    """Add ADMIN_EMAILS to the admin set. Admins added later from the UI are kept."""
    if not config.ADMIN_EMAILS:
        return 0
    return kv_store.client.sadd(ADMINS_KEY, *config.ADMIN_EMAILS)


def init_db():
    Base.metadata.create_all(bind=engine)
    try:
        added = sync_initial_admins()
        logger.info(f"Database initialized, {added} initial admins synced.")
    except Exception as e:
        logger.error(f"Database initialized but admin sync failed: {e}")


if __name__ == "__main__":
    import logging_config  # noqa: F401
    init_db()
