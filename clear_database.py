"""Empty the users, posts and comments collections of the configured database."""
import argparse
import logging
import sys

from admin import clear_collections, collection_stats
from config import get_settings
from database import connect

logger = logging.getLogger("clear_database")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--yes", action="store_true", help="do not ask for confirmation")
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    db = connect(settings)
    before = collection_stats(db)
    logger.info("About to clear %d users, %d posts, %d comments", before.users, before.posts, before.comments)
    if not args.yes:
        answer = input(f"Clear database {settings.database_name!r}? [y/N] ")
        if answer.strip().lower() != "y":
            logger.info("Aborted")
            return 1

    clear_collections(db)
    logger.info("Database cleared successfully")
    db.client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
