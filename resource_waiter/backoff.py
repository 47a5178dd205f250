import random
from typing import Iterator


def backoff_delays(
    initial_delay: float, max_delay: float, multiplier: float
) -> Iterator[float]:
    """Yield exponentially growing delays, capped at ``max_delay``"""
    delay = min(initial_delay, max_delay)
    while True:
        yield delay
        delay = min(delay * multiplier, max_delay)


def apply_jitter(delay: float, max_delay: float, ratio: float = 0.2) -> float:
    # Add random jitter between 0-20% of the delay
    return min(delay * (1 + ratio * random.random()), max_delay)
