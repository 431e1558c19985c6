"""
Clock

All raffle timestamps are Unix seconds. Managers take ``now`` as an optional
argument and fall back to this clock.
"""
import time


def current_timestamp() -> int:
    return int(time.time())
