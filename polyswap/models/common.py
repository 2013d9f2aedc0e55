"""Common helpers shared across models."""

import time


def unix_now() -> int:
    return int(time.time())
