"""Domain records returned by the YouTube client."""

from dataclasses import dataclass


@dataclass
class Video:
    id: str
    title: str
    channel_title: str


@dataclass
class SearchResult:
    video_id: str
    title: str
    channel_title: str
    description: str


@dataclass
class VideoDetail:
    id: str
    title: str
    channel_title: str
    description: str
    duration: str  # ISO 8601, e.g. PT4M30S
    published_at: str


@dataclass
class Playlist:
    id: str
    title: str
    description: str
    item_count: int


@dataclass
class Subscription:
    channel_id: str
    title: str
    description: str
