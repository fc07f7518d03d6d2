"""Feed configuration dataclass.

Represents one monitored log/alert feed pair written by a strategy process.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class FeedConfig:
    """Configuration for a single monitored feed.

    Each feed pairs a plain-text monitor log with the JSONL file of alerts
    that monitor emits.  Paths are relative to the feed base URL.
    """

    name: str
    platform: str  # platform tag, e.g. "polymarket"
    log_path: str
    alerts_path: str
    description: str = ""
    threshold: str = ""
    expected_win_rate: str = ""
