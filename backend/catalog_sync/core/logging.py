import logging
import sys
from typing import Optional

from catalog_sync.core.config import settings


def setup_logging(level: Optional[str] = None):
    # Log to stdout so it appears in docker logs
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stdout
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
