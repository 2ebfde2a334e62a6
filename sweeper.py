import logging
from datetime import datetime
from typing import Callable, Optional

from models import utcnow
from store import SecretStore

logger = logging.getLogger(__name__)

SWEEP_INTERVAL = 3600


class ExpirySweeper:
    """Deletes expired rows in bulk. Reads enforce expiry on their own; this only reclaims space."""

    def __init__(self, store: SecretStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    def sweep(self, now: Optional[datetime] = None) -> int:
        removed = self.store.delete_expired(now or self.clock())
        if removed:
            logger.info("Expiry sweep removed %d secret(s)", removed)
        else:
            logger.debug("Expiry sweep found nothing to remove")
        return removed
