# Run: python -m app.scripts.backfill_sales_count
import logging
import sys

from pymongo.errors import PyMongoError

from app.core.config import LOG_LEVEL
from app.services.sales_service import backfill_sales_count


def main() -> int:
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    try:
        updated = backfill_sales_count()
    except PyMongoError as e:
        logging.getLogger("SALES").error(f"Backfill error: {e}")
        return 1
    print(f"Backfill complete: {updated} products updated.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
