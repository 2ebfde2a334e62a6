import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

logger = logging.getLogger(__name__)

REQUESTS_RATE_LIMIT = 100
IP_RATE_LIMIT_TIME = 30.0
TICK_INTERVAL = 5.0


class AdmissionController:
    """Process-local throttle for secret creation.

    Two caps apply: a global counter that leaks one unit per tick, and a
    per-address window during which an address may not create again. Address
    windows all have the same length, so valid-until times never decrease in
    insertion order and pruning can stop at the first live entry.
    """

    def __init__(
        self,
        request_limit: int = REQUESTS_RATE_LIMIT,
        address_window: float = IP_RATE_LIMIT_TIME,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.request_limit = request_limit
        self.address_window = address_window
        self.clock = clock
        self._lock = threading.Lock()
        self._in_flight = 0
        self._addresses: "OrderedDict[str, float]" = OrderedDict()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def __len__(self) -> int:
        return len(self._addresses)

    def try_admit(self, address: Optional[str]) -> bool:
        if not address:
            return False
        with self._lock:
            if self._in_flight >= self.request_limit:
                logger.info("Creation rejected: global limit of %d reached", self.request_limit)
                return False
            now = self.clock()
            valid_until = self._addresses.get(address)
            if valid_until is not None and valid_until > now:
                logger.info("Creation rejected: address inside its window")
                return False
            if valid_until is not None:
                # Stale entry the tick has not reached yet; re-append at the tail.
                del self._addresses[address]
            self._addresses[address] = now + self.address_window
            self._in_flight += 1
            return True

    def tick(self) -> None:
        with self._lock:
            if self._in_flight > 0:
                self._in_flight -= 1
            now = self.clock()
            while self._addresses:
                oldest = next(iter(self._addresses.values()))
                if oldest > now:
                    break
                self._addresses.popitem(last=False)
