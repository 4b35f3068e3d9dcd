"""Watch-next composition from fresh, cached, cross-channel and series pools."""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence

from timemachine.core.config import Settings, settings as default_settings
from timemachine.services.video_formatting import parse_timestamp
from timemachine.services.video_record import VideoRecord

logger = logging.getLogger(__name__)

SERIES_KEYWORDS: tuple[str, ...] = (
    "mod review", "feed the beast", "ftb", "minecraft", "tutorial",
    "let's play", "lets play", "playthrough", "walkthrough", "guide", "tips",
    "tricks", "build", "showcase", "series", "season", "modded", "vanilla",
    "survival", "creative", "adventure", "multiplayer", "single player",
    "review", "reaction", "first time", "blind", "commentary", "gameplay",
    "stream", "live", "vod", "highlights", "compilation", "montage",
)
PHRASE_STOPWORDS = frozenset({"The", "And", "For", "With", "From"})

_EPISODE_PATTERNS = (
    re.compile(r"episode\s*(\d+)", re.IGNORECASE),
    re.compile(r"\bep\.?\s*(\d+)", re.IGNORECASE),
    re.compile(r"part\s*(\d+)", re.IGNORECASE),
    re.compile(r"#(\d+)"),
)
_NUMBER_RE = re.compile(r"\b(\d+)\b")
_ENCLOSED_RE = re.compile(r'"(.*?)"|(?<!\w)\'(.*?)\'(?!\w)|\[(.*?)\]|\((.*?)\)')
_CAPITALIZED_RE = re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\b")


def _episode_variants(number: int) -> list[str]:
    return [f"episode {number}", f"ep {number}", f"part {number}", f"#{number}"]


def extract_video_keywords(title: str) -> list[str]:
    """Collect series hints from a title: episode numbers, genre words, bracketed and proper phrases."""

    keywords: list[str] = []

    for pattern in _EPISODE_PATTERNS:
        match = pattern.search(title)
        if match:
            keywords.extend(_episode_variants(int(match.group(1))))
    for match in _NUMBER_RE.finditer(title):
        number = int(match.group(1))
        if 0 < number < 1000:
            keywords.extend(_episode_variants(number))

    lowered = title.lower()
    keywords.extend(keyword for keyword in SERIES_KEYWORDS if keyword in lowered)

    for match in _ENCLOSED_RE.finditer(title):
        inner = next((group for group in match.groups() if group is not None), "").strip()
        if len(inner) > 2:
            keywords.append(inner)

    for match in _CAPITALIZED_RE.finditer(title):
        phrase = match.group(0)
        if len(phrase) > 3 and phrase not in PHRASE_STOPWORDS:
            keywords.append(phrase)

    return list(dict.fromkeys(keywords))


def matches_keywords(video: VideoRecord, keywords: Sequence[str]) -> bool:
    title = video.title.lower()
    return any(keyword.lower() in title for keyword in keywords)


@dataclass(frozen=True, slots=True)
class RecommendationContext:
    current_channel_id: str | None
    current_video_title: str
    reference_date: datetime


class RecommendationEngine:
    """Blends candidate pools into one list under the configured ratios.

    Randomness comes only from the injected ``rng`` so a seeded instance is
    fully reproducible.
    """

    def __init__(self, *, config: Settings = default_settings, rng: random.Random | None = None) -> None:
        self._config = config
        self._rng = rng or random.Random()

    def shuffle(self, videos: Iterable[VideoRecord]) -> list[VideoRecord]:
        shuffled = list(videos)
        for i in range(len(shuffled) - 1, 0, -1):
            j = self._rng.randint(0, i)
            shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
        return shuffled

    def generate(
        self,
        context: RecommendationContext,
        all_videos: Sequence[VideoRecord],
        fresh_videos: Sequence[VideoRecord] = (),
        series_videos: Sequence[VideoRecord] = (),
    ) -> list[VideoRecord]:
        target = self._config.recommendation_count
        title = context.current_video_title
        reference = parse_timestamp(context.reference_date)
        keywords = extract_video_keywords(title or "")

        def not_future(video: VideoRecord) -> bool:
            return video.published <= reference

        valid_all = [video for video in all_videos if not_future(video)]
        valid_fresh = [video for video in fresh_videos if not_future(video)]
        valid_series = [video for video in series_videos if not_future(video) and video.title != title]

        same_channel: list[VideoRecord] = []
        other_channels: list[VideoRecord] = []
        for video in valid_all:
            if context.current_channel_id and video.channel_id == context.current_channel_id:
                if video.title != title:
                    same_channel.append(video)
            else:
                other_channels.append(video)

        fresh_count = min(self._config.fresh_videos_count, len(valid_fresh))
        keyword_fresh_count = int(fresh_count * self._config.keyword_match_ratio)
        regular_fresh_count = fresh_count - keyword_fresh_count
        remaining = max(target - fresh_count, 0)
        same_channel_count = int(remaining * self._config.same_channel_ratio)
        other_channels_count = remaining - same_channel_count

        logger.debug(
            "Recommendation quotas",
            extra={
                "keywords": keywords,
                "fresh": fresh_count,
                "keyword_fresh": keyword_fresh_count,
                "same_channel": same_channel_count,
                "other_channels": other_channels_count,
            },
        )

        selected: list[VideoRecord] = []
        selected_ids: set[str] = set()

        def eligible(pool: Iterable[VideoRecord]) -> list[VideoRecord]:
            seen: set[str] = set()
            candidates: list[VideoRecord] = []
            for video in pool:
                if video.id in selected_ids or video.id in seen or video.title == title:
                    continue
                seen.add(video.id)
                candidates.append(video)
            return candidates

        def take(pool: Iterable[VideoRecord], count: int) -> None:
            if count <= 0:
                return
            for video in self.shuffle(eligible(pool))[:count]:
                selected.append(video)
                selected_ids.add(video.id)

        if keywords:
            take((video for video in valid_fresh if matches_keywords(video, keywords)), keyword_fresh_count)
        take(valid_fresh, regular_fresh_count)
        fresh_ids = {video.id for video in valid_fresh}
        take((video for video in same_channel if video.id not in fresh_ids), same_channel_count)
        take(other_channels, other_channels_count)

        leftovers = eligible([*valid_all, *valid_fresh, *valid_series])
        while len(selected) < target and leftovers:
            video = leftovers.pop(self._rng.randrange(len(leftovers)))
            selected.append(video)
            selected_ids.add(video.id)

        result = self.intersperse_series(selected, eligible(valid_series))
        logger.info(
            "Generated %s recommendations for %r",
            min(len(result), target),
            title,
            extra={"channel_id": context.current_channel_id},
        )
        return result[:target]

    def intersperse_series(
        self,
        recommendations: Sequence[VideoRecord],
        series_videos: Sequence[VideoRecord],
    ) -> list[VideoRecord]:
        result = list(recommendations)
        if not series_videos:
            return result

        count = min(self._config.series_match_videos_count, len(series_videos))
        limit = max(min(len(result), self._config.recommendation_count - count), 0)
        count = min(count, limit + 1)
        chosen = self.shuffle(series_videos)[:count]
        # positions index the ranked list; inserting back-to-front keeps every pick below the target length
        positions = sorted(self._rng.sample(range(limit + 1), count), reverse=True)
        for position, video in zip(positions, chosen):
            result.insert(position, video)
        return result
