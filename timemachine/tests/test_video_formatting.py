from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest

from timemachine.services import video_formatting
from timemachine.services.video_record import VideoRecord, video_from_item
from timemachine.tests.factories import search_item

REFERENCE = datetime(2014, 6, 14, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("count", "expected"),
    [
        (0, "0"),
        (999, "999"),
        (1_000, "1K"),
        (1_250, "1.2K"),
        (15_000, "15K"),
        (999_949, "999.9K"),
        (1_000_000, "1M"),
        (2_345_678, "2.3M"),
    ],
)
def test_format_view_count(count: int, expected: str) -> None:
    assert video_formatting.format_view_count(count) == expected


@pytest.mark.parametrize(
    ("elapsed", "expected"),
    [
        (timedelta(0), "just now"),
        (timedelta(seconds=-30), "just now"),
        (timedelta(seconds=1), "1 second ago"),
        (timedelta(seconds=45), "45 seconds ago"),
        (timedelta(minutes=1), "1 minute ago"),
        (timedelta(hours=5, minutes=59), "5 hours ago"),
        (timedelta(hours=23, minutes=59), "23 hours ago"),
        (timedelta(days=1), "1 day ago"),
        (timedelta(days=6, hours=23), "6 days ago"),
        (timedelta(days=7), "1 week ago"),
        (timedelta(days=29), "4 weeks ago"),
        (timedelta(days=30), "1 month ago"),
        (timedelta(days=364), "12 months ago"),
        (timedelta(days=365), "1 year ago"),
        (timedelta(days=800), "2 years ago"),
    ],
)
def test_format_relative_date(elapsed: timedelta, expected: str) -> None:
    assert video_formatting.format_relative_date(REFERENCE - elapsed, REFERENCE) == expected


def test_parse_timestamp_accepts_zulu_and_naive_values() -> None:
    assert video_formatting.parse_timestamp("2014-06-01T12:00:00Z") == datetime(2014, 6, 1, 12, tzinfo=timezone.utc)
    assert video_formatting.parse_timestamp(datetime(2014, 6, 1)).tzinfo is timezone.utc


def test_days_since_rounds_down() -> None:
    assert video_formatting.days_since("2014-06-13T13:00:00Z", REFERENCE) == 0
    assert video_formatting.days_since("2014-06-13T12:00:00Z", REFERENCE) == 1


@pytest.mark.parametrize(
    ("days", "viral", "expected"),
    [
        (0, False, (50, 10_000)),
        (1, False, (50, 10_000)),
        (7, False, (500, 100_000)),
        (30, False, (2_000, 500_000)),
        (365, False, (5_000, 2_000_000)),
        (366, False, (10_000, 10_000_000)),
        (0, True, (100_000, 5_000_000)),
        (20, True, (500_000, 20_000_000)),
        (4_000, True, (2_000_000, 100_000_000)),
    ],
)
def test_view_range_buckets(days: int, viral: bool, expected: tuple[int, int]) -> None:
    assert video_formatting.view_range(days, viral=viral) == expected


def test_generated_view_count_is_seeded_and_within_range() -> None:
    published = REFERENCE - timedelta(days=3)

    first = video_formatting.generate_view_count(published, REFERENCE, rng=random.Random(5))
    second = video_formatting.generate_view_count(published, REFERENCE, rng=random.Random(5))

    assert first == second
    assert first.endswith("K") or first.replace(",", "").isdigit()


def test_video_from_item_maps_snippet() -> None:
    item = search_item("abc123", title="Mod Spotlight", channel_id="UC1", channel_title="")

    video = video_from_item(item, REFERENCE, fallback_channel_name="Direwolf20", rng=random.Random(1))

    assert isinstance(video, VideoRecord)
    assert video.id == "abc123"
    assert video.channel_name == "Direwolf20"
    assert video.thumbnail_url.endswith("/abc123/mqdefault.jpg")
    assert video.relative_date_display == "1 week ago"
    assert VideoRecord.from_dict(video.to_dict()) == video


def test_video_from_item_skips_incomplete_items() -> None:
    assert video_from_item({"id": {"kind": "youtube#channel"}, "snippet": {}}, REFERENCE) is None
    assert video_from_item({"id": {"videoId": "x"}, "snippet": {"title": "t"}}, REFERENCE) is None
