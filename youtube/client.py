"""YouTube Data API v3 client.

Thin async wrapper over the REST endpoints used by the MCP tools. Every
request is authorized with the upstream Google token obtained through the
OAuth flow; the token provider refreshes it when needed.

Quota costs (daily limit 10,000 units): search 100, insert 50, list 1 per page.
"""

import logging
from typing import Awaitable, Callable, Optional

import httpx

from youtube.models import Playlist, SearchResult, Subscription, Video, VideoDetail

logger = logging.getLogger(__name__)

API_BASE_URL = "https://www.googleapis.com/youtube/v3"

MUSIC_CATEGORY_ID = "10"
PAGE_SIZE = 50
MAX_SEARCH_RESULTS = 25
PRIVACY_STATUSES = ("public", "private", "unlisted")

TokenProvider = Callable[[], Awaitable[str]]


class YouTubeError(Exception):
    """A YouTube API call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, reason: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason


def _error_from_response(response: httpx.Response) -> YouTubeError:
    message = f"HTTP {response.status_code}"
    reason = ""
    try:
        error = response.json().get("error", {})
        message = error.get("message") or message
        errors = error.get("errors") or []
        if errors:
            reason = errors[0].get("reason", "")
    except (ValueError, AttributeError):
        pass
    return YouTubeError(message, status_code=response.status_code, reason=reason)


class YouTubeClient:
    """Async YouTube Data API client.

    Args:
        token_provider: Coroutine function returning a valid Google access token.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (used by tests).
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        timeout: float = 30.0,
        base_url: str = API_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._token_provider = token_provider
        self._timeout = timeout
        self._base_url = base_url
        self._transport = transport

    async def _request(self, method: str, path: str, params: dict,
                       json_body: Optional[dict] = None) -> dict:
        token = await self._token_provider()
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    method,
                    path,
                    params=params,
                    json=json_body,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            raise YouTubeError(f"Request to YouTube failed: {e}") from e

        if response.status_code >= 400:
            raise _error_from_response(response)
        try:
            return response.json()
        except ValueError as e:
            raise YouTubeError(f"Invalid response from YouTube: {e}", status_code=response.status_code) from e

    async def _paginate(self, path: str, params: dict, limit: int = 0):
        """Yield items across pages until exhausted or limit items were seen."""
        params = {**params, "maxResults": PAGE_SIZE}
        seen = 0
        while True:
            data = await self._request("GET", path, params)
            for item in data.get("items", []):
                yield item
                seen += 1
                if limit and seen >= limit:
                    return
            page_token = data.get("nextPageToken")
            if not page_token:
                return
            params["pageToken"] = page_token

    # ============== Account ==============

    async def validate_auth(self) -> str:
        """Return the authenticated user's channel title."""
        data = await self._request("GET", "/channels", {"part": "snippet", "mine": "true"})
        items = data.get("items") or []
        if not items:
            raise YouTubeError("No channel found for authenticated user")
        return items[0]["snippet"]["title"]

    # ============== Search ==============

    async def search_videos(self, query: str, max_results: int = 10) -> list[SearchResult]:
        """Search the Music category. Single page only: each page costs 100 units."""
        if not query:
            raise YouTubeError("Search query cannot be empty")
        if max_results <= 0:
            max_results = 10
        max_results = min(max_results, MAX_SEARCH_RESULTS)

        data = await self._request("GET", "/search", {
            "part": "snippet",
            "q": query,
            "type": "video",
            "videoCategoryId": MUSIC_CATEGORY_ID,
            "maxResults": max_results,
        })
        return [
            SearchResult(
                video_id=item["id"].get("videoId", ""),
                title=item["snippet"].get("title", ""),
                channel_title=item["snippet"].get("channelTitle", ""),
                description=item["snippet"].get("description", ""),
            )
            for item in data.get("items", [])
        ]

    async def get_video(self, video_id: str) -> Optional[VideoDetail]:
        """Look up one video. A missing video returns None, not an error."""
        if not video_id:
            raise YouTubeError("Video ID cannot be empty")

        data = await self._request("GET", "/videos", {"part": "snippet,contentDetails", "id": video_id})
        items = data.get("items") or []
        if not items:
            return None

        item = items[0]
        snippet = item.get("snippet", {})
        return VideoDetail(
            id=item["id"],
            title=snippet.get("title", ""),
            channel_title=snippet.get("channelTitle", ""),
            description=snippet.get("description", ""),
            duration=item.get("contentDetails", {}).get("duration", ""),
            published_at=snippet.get("publishedAt", ""),
        )

    # ============== Playlists ==============

    async def get_liked_videos(self) -> list[Video]:
        """All liked videos, following the channel's likes playlist."""
        data = await self._request("GET", "/channels", {"part": "contentDetails", "mine": "true"})
        items = data.get("items") or []
        if not items:
            raise YouTubeError("No channel found for authenticated user")

        likes_id = items[0].get("contentDetails", {}).get("relatedPlaylists", {}).get("likes")
        if not likes_id:
            raise YouTubeError("No likes playlist found")
        return await self.get_playlist_items(likes_id)

    async def filter_music_videos(self, videos: list[Video]) -> list[Video]:
        """Keep only videos in the Music category. Costs 1 unit per 50 videos."""
        music_ids = set()
        for start in range(0, len(videos), PAGE_SIZE):
            batch = videos[start:start + PAGE_SIZE]
            data = await self._request("GET", "/videos", {
                "part": "snippet",
                "id": ",".join(v.id for v in batch),
            })
            for item in data.get("items", []):
                if item.get("snippet", {}).get("categoryId") == MUSIC_CATEGORY_ID:
                    music_ids.add(item["id"])
        return [v for v in videos if v.id in music_ids]

    async def list_playlists(self) -> list[Playlist]:
        playlists = []
        async for item in self._paginate("/playlists", {"part": "snippet,contentDetails", "mine": "true"}):
            playlists.append(Playlist(
                id=item["id"],
                title=item["snippet"].get("title", ""),
                description=item["snippet"].get("description", ""),
                item_count=int(item.get("contentDetails", {}).get("itemCount", 0)),
            ))
        return playlists

    async def get_playlist_items(self, playlist_id: str) -> list[Video]:
        if not playlist_id:
            raise YouTubeError("Playlist ID cannot be empty")

        videos = []
        async for item in self._paginate("/playlistItems", {"part": "snippet", "playlistId": playlist_id}):
            snippet = item.get("snippet", {})
            videos.append(Video(
                id=snippet.get("resourceId", {}).get("videoId", ""),
                title=snippet.get("title", ""),
                channel_title=snippet.get("videoOwnerChannelTitle", ""),
            ))
        return videos

    async def create_playlist(self, title: str, description: str = "",
                              privacy_status: str = "private") -> Playlist:
        """Create a playlist. Costs 50 units."""
        if not title:
            raise YouTubeError("Title cannot be empty")
        privacy_status = privacy_status or "private"
        if privacy_status not in PRIVACY_STATUSES:
            raise YouTubeError("Invalid privacy status: must be one of 'public', 'private', or 'unlisted'")

        data = await self._request("POST", "/playlists", {"part": "snippet,status"}, json_body={
            "snippet": {"title": title, "description": description},
            "status": {"privacyStatus": privacy_status},
        })
        logger.info(f"[YOUTUBE] Created playlist {data.get('id')}")
        return Playlist(
            id=data["id"],
            title=data["snippet"].get("title", title),
            description=data["snippet"].get("description", description),
            item_count=0,
        )

    async def add_videos_to_playlist(self, playlist_id: str, video_ids: list[str]) -> int:
        """Add videos one by one and return how many were added.

        Videos already in the playlist are skipped. Any other failure stops
        the loop; the error carries the count added so far.
        """
        if not playlist_id:
            raise YouTubeError("Playlist ID cannot be empty")
        if not video_ids:
            raise YouTubeError("Video IDs cannot be empty")

        added = 0
        for video_id in video_ids:
            try:
                await self._request("POST", "/playlistItems", {"part": "snippet"}, json_body={
                    "snippet": {
                        "playlistId": playlist_id,
                        "resourceId": {"kind": "youtube#video", "videoId": video_id},
                    },
                })
            except YouTubeError as e:
                if e.status_code == 409 or e.reason == "videoAlreadyInPlaylist":
                    continue
                raise YouTubeError(
                    f"Failed to add video {video_id} to playlist after adding {added}: {e}",
                    status_code=e.status_code,
                    reason=e.reason,
                ) from e
            added += 1
        return added

    # ============== Subscriptions ==============

    async def get_subscriptions(self, max_results: int = 0) -> list[Subscription]:
        """Channel subscriptions; max_results of 0 returns all of them."""
        subscriptions = []
        async for item in self._paginate("/subscriptions", {"part": "snippet", "mine": "true"},
                                         limit=max(max_results, 0)):
            snippet = item.get("snippet", {})
            subscriptions.append(Subscription(
                channel_id=snippet.get("resourceId", {}).get("channelId", ""),
                title=snippet.get("title", ""),
                description=snippet.get("description", ""),
            ))
        return subscriptions
