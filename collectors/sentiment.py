"""
News Sentiment Collector

Blends two sources into one score in [-1, 1]:
- crypto news headlines (RSS), scored by bullish/bearish keywords
- the Fear & Greed index, mapped from 0..100 to -1..1

    score = 0.7 * headlines + 0.3 * fear_greed
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

import feedparser
import requests

from collectors.fanout import fan_out, successes
from core.exceptions import TransientFetchFailure
from core.snapshots import SentimentSnapshot

logger = logging.getLogger(__name__)

USER_AGENT = "pulsetrader/0.2"
FEAR_GREED_URL = "https://api.alternative.me/fng/?limit=1"

DEFAULT_FEEDS: Sequence[str] = (
    "https://www.coindesk.com/arc/outboundfeeds/rss/",
    "https://cointelegraph.com/rss",
    "https://decrypt.co/feed",
    "https://www.theblock.co/rss.xml",
)

POSITIVE_WORDS = (
    "surge", "rally", "bull", "breakout", "approval", "inflow", "beat",
    "growth", "higher", "adoption", "record high", "recovery",
)
NEGATIVE_WORDS = (
    "crash", "drop", "bear", "selloff", "hack", "exploit", "outflow", "ban",
    "lawsuit", "lower", "liquidation", "recession", "fraud",
)

HEADLINE_WEIGHT = 0.7
FEAR_GREED_WEIGHT = 0.3
MAX_TITLES_PER_FEED = 30


def _clamp(value: float) -> float:
    return max(-1.0, min(1.0, value))


def score_headline(text: str) -> int:
    """+1 per bullish keyword, -1 per bearish keyword."""
    lowered = text.lower()
    score = sum(1 for w in POSITIVE_WORDS if w in lowered)
    score -= sum(1 for w in NEGATIVE_WORDS if w in lowered)
    return score


def extract_titles(xml: str, limit: int = MAX_TITLES_PER_FEED) -> List[str]:
    """Item titles from an RSS/Atom document (the channel title is not an item)."""
    feed = feedparser.parse(xml)
    titles = [(entry.get("title") or "").strip() for entry in feed.entries]
    return [t for t in titles if t][:limit]


def headline_score(titles: Sequence[str]) -> float:
    """Mean keyword score, halved and clamped to [-1, 1]."""
    if not titles:
        return 0.0
    mean = sum(score_headline(t) for t in titles) / len(titles)
    return _clamp(mean / 2)


class SentimentCollector:
    """Best-effort sentiment fetcher; feeds that fail contribute nothing."""

    def __init__(
        self,
        feeds: Optional[Sequence[str]] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ):
        self.feeds = list(feeds or DEFAULT_FEEDS)
        self.session = session or requests.Session()
        self.timeout = timeout

    def fetch_feed(self, url: str) -> List[str]:
        try:
            response = self.session.get(url, headers={"user-agent": USER_AGENT}, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as exc:
            raise TransientFetchFailure(f"RSS {url}", exc) from exc
        return extract_titles(response.text)

    def fetch_fear_greed(self) -> float:
        """Fear & Greed mapped to [-1, 1]; 0 when unavailable."""
        try:
            response = self.session.get(FEAR_GREED_URL, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
            value = float(((data.get("data") or [{}])[0]).get("value") or 50)
        except (requests.exceptions.RequestException, ValueError, TypeError, IndexError) as exc:
            logger.debug(f"Fear & Greed unavailable: {exc}")
            return 0.0
        return _clamp((value - 50) / 50)

    def fetch(self) -> SentimentSnapshot:
        with ThreadPoolExecutor(max_workers=2) as pool:
            feeds_future = pool.submit(fan_out, self.fetch_feed, self.feeds)
            fear_greed_future = pool.submit(self.fetch_fear_greed)
            titles = [t for batch in successes(feeds_future.result()) for t in batch]
            fear_greed = fear_greed_future.result()

        headlines = headline_score(titles)
        blended = HEADLINE_WEIGHT * headlines + FEAR_GREED_WEIGHT * fear_greed

        return SentimentSnapshot(
            score=round(blended, 3),
            components={
                "headlines": round(headlines, 3),
                "fear_greed": round(fear_greed, 3),
            },
            sample=titles[:6],
        )
