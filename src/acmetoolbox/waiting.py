"""Wait primitive used between polling attempts."""

import time
from abc import ABC, abstractmethod


class Sleeper(ABC):
    """Blocks the caller between polls. Tests inject one that returns immediately."""

    @abstractmethod
    def wait(self, seconds: float) -> None: ...


class SystemSleeper(Sleeper):
    def wait(self, seconds: float) -> None:
        time.sleep(seconds)
