"""MCP tools for youtube-music-mcp.

This module defines the MCP tools exposed to clients. Each tool calls the
YouTube client and formats the result as text for the LLM. The client is
resolved per call, so in HTTP mode the tools start working as soon as the
first OAuth callback stores a Google token.
"""

import logging
import math
import re
from collections import Counter
from typing import Callable

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from oauth.errors import UpstreamError
from oauth.token_storage import TokenStorageError
from youtube.client import YouTubeClient, YouTubeError

logger = logging.getLogger(__name__)

SERVER_NAME = "youtube-music-mcp"

TOOL_NAMES = [
    "search_videos",
    "get_video",
    "get_liked_videos",
    "list_playlists",
    "get_playlist_items",
    "create_playlist",
    "add_to_playlist",
    "get_subscriptions",
    "analyze_my_tastes",
    "recommend_playlist",
    "recommend_artists",
    "recommend_albums",
]

# Playlists created by recommend_playlist carry this prefix
RECOMMENDED_PLAYLIST_PREFIX = "[YM-MCP]"

MAX_RECOMMENDED_SONGS = 50
MAX_RECOMMEND_QUERIES = 10
MAX_TERM_LENGTH = 80
TOP_ARTISTS = 10
RESULTS_PER_QUERY = 5

# Phrases that mark an instruction to the assistant rather than a search term
INSTRUCTIONAL_WORDS = (
    "focus", "include", "avoid", "exclude", "not ", "these are",
    "based on", "should", "must", "make sure", "prefer", "prioritize",
    "similar to what", "songs from", "mix of",
)

TERM_SEPARATOR = re.compile(r"[,;.:\n]+|\band\b")


def split_description_into_terms(description: str) -> list[str]:
    """Split a free-text description into search-friendly terms.

    Splits on punctuation and the word "and", drops phrases that read like
    instructions, and caps each term at 80 characters.
    """
    terms = []
    for part in TERM_SEPARATOR.split(description):
        term = part.strip()
        if not term:
            continue
        lower = term.lower()
        if any(word in lower for word in INSTRUCTIONAL_WORDS):
            continue
        terms.append(term[:MAX_TERM_LENGTH])
    return terms


def count_artists(liked: list, subscriptions: list) -> Counter:
    """Count how often each channel appears across liked videos and subscriptions."""
    counts = Counter(v.channel_title for v in liked if v.channel_title)
    counts.update(s.title for s in subscriptions if s.title)
    return counts


def to_tool_error(description: str, error: Exception) -> ToolError:
    if isinstance(error, UpstreamError):
        return ToolError(f"Not authenticated with YouTube: {error.description}")
    if isinstance(error, TokenStorageError):
        return ToolError(f"Not authenticated with YouTube: {error}. Run the login command first.")
    return ToolError(f"Failed to {description}: {error}")


def create_mcp_server(get_client: Callable[[], YouTubeClient]) -> FastMCP:
    """Build the FastMCP server.

    Args:
        get_client: Returns the YouTube client to use for a tool call.
    """
    mcp = FastMCP(SERVER_NAME)

    async def call(description: str, coro_fn, *args, **kwargs):
        try:
            return await coro_fn(*args, **kwargs)
        except (UpstreamError, TokenStorageError, YouTubeError) as e:
            raise to_tool_error(description, e) from e

    @mcp.tool()
    async def search_videos(query: str, max_results: int = 10) -> str:
        """Search YouTube for music videos (Music category only).

        WARNING: each search costs 100 API quota units (daily limit 10,000).
        Prefer get_video (1 unit) when you already have a video ID.

        Args:
            query: Search query, e.g. artist name and song title
            max_results: Maximum results to return (default 10, max 25)
        """
        logger.info("[TOOL] search_videos invoked")
        results = await call("search videos", get_client().search_videos, query, max_results)
        lines = [f"Found {len(results)} music videos for query '{query}'", ""]
        for r in results:
            lines.append(f"- {r.title} - {r.channel_title} (videoId: {r.video_id})")
        return "\n".join(lines)

    @mcp.tool()
    async def get_video(video_id: str) -> str:
        """Look up a YouTube video by ID. Quota cost: 1 unit.

        Use this to verify a video exists before adding it to a playlist.
        """
        logger.info("[TOOL] get_video invoked")
        video = await call("get video", get_client().get_video, video_id)
        if video is None:
            return f"Video not found: {video_id}"
        return (
            f"Found video: {video.title} by {video.channel_title} (duration: {video.duration})\n"
            f"ID: {video.id}\nPublished: {video.published_at}\n\n{video.description}"
        )

    @mcp.tool()
    async def get_liked_videos() -> str:
        """Retrieve the songs the user has liked on YouTube. Quota cost: ~2 units."""
        logger.info("[TOOL] get_liked_videos invoked")
        videos = await call("get liked videos", get_client().get_liked_videos)
        lines = [f"Liked videos ({len(videos)}):", ""]
        lines.extend(f"- {v.title} - {v.channel_title} (videoId: {v.id})" for v in videos)
        return "\n".join(lines)

    @mcp.tool()
    async def list_playlists() -> str:
        """List the user's playlists with track counts. Quota cost: ~1 unit per 50 playlists."""
        logger.info("[TOOL] list_playlists invoked")
        playlists = await call("list playlists", get_client().list_playlists)
        lines = [f"Playlists ({len(playlists)}):", ""]
        lines.extend(f"- {p.title} ({p.item_count} items, id: {p.id})" for p in playlists)
        return "\n".join(lines)

    @mcp.tool()
    async def get_playlist_items(playlist_id: str) -> str:
        """Retrieve the tracks in a playlist. Use list_playlists first to get IDs.

        Quota cost: ~1 unit per 50 items.
        """
        logger.info("[TOOL] get_playlist_items invoked")
        videos = await call("get playlist items", get_client().get_playlist_items, playlist_id)
        lines = [f"Playlist {playlist_id} ({len(videos)} items):", ""]
        lines.extend(f"- {v.title} - {v.channel_title} (videoId: {v.id})" for v in videos)
        return "\n".join(lines)

    @mcp.tool()
    async def create_playlist(title: str, description: str = "", privacy_status: str = "private") -> str:
        """Create a playlist on the user's account. Quota cost: 50 units.

        Args:
            title: Playlist title
            description: Optional playlist description
            privacy_status: One of public, private (default) or unlisted
        """
        logger.info("[TOOL] create_playlist invoked")
        playlist = await call("create playlist", get_client().create_playlist,
                              title, description, privacy_status)
        return f"Created playlist '{playlist.title}' (id: {playlist.id})"

    @mcp.tool()
    async def add_to_playlist(playlist_id: str, video_ids: list[str]) -> str:
        """Add videos to a playlist. Duplicates are skipped. Quota cost: 50 units per video."""
        logger.info(f"[TOOL] add_to_playlist invoked with {len(video_ids)} videos")
        added = await call("add videos to playlist", get_client().add_videos_to_playlist,
                           playlist_id, video_ids)
        skipped = len(video_ids) - added
        message = f"Added {added} of {len(video_ids)} videos to playlist {playlist_id}"
        if skipped:
            message += f" ({skipped} already present)"
        return message

    @mcp.tool()
    async def get_subscriptions(max_results: int = 25) -> str:
        """Retrieve the channels the user subscribes to. Quota cost: ~1 unit per 50.

        Args:
            max_results: Maximum subscriptions to return (0 for all)
        """
        logger.info("[TOOL] get_subscriptions invoked")
        subscriptions = await call("get subscriptions", get_client().get_subscriptions, max_results)
        lines = [f"Subscriptions ({len(subscriptions)}):", ""]
        lines.extend(f"- {s.title} (channelId: {s.channel_id})" for s in subscriptions)
        return "\n".join(lines)

    @mcp.tool()
    async def analyze_my_tastes(include_previous_recommendations: bool = False) -> str:
        """Gather the user's music taste for the LLM to interpret.

        Collects liked videos (music only), subscriptions and playlists, and
        optionally the songs in playlists previously created by this server.
        Quota cost: ~5-10 units plus ~1 unit per 50 liked videos.
        """
        logger.info("[TOOL] analyze_my_tastes invoked")
        client = get_client()

        liked = await call("get liked videos", client.get_liked_videos)
        liked = await call("filter music videos", client.filter_music_videos, liked)
        subscriptions = await call("get subscriptions", client.get_subscriptions)
        playlists = await call("list playlists", client.list_playlists)

        out = ["# YouTube Music Taste Analysis", ""]
        out.append(f"## Liked Songs - music only ({len(liked)} songs)")
        out.append("")
        out.extend(f"- {v.title} - {v.channel_title}" for v in liked)
        out.append("")
        out.append(f"## Subscribed Channels ({len(subscriptions)} channels)")
        out.append("")
        out.extend(f"- {s.title}" for s in subscriptions)
        out.append("")
        out.append(f"## Your Playlists ({len(playlists)} playlists)")
        out.append("")
        out.extend(f"- {p.title} ({p.item_count} items)" for p in playlists)
        out.append("")

        if include_previous_recommendations:
            out.append("## Previously Recommended Songs")
            out.append("")
            found = 0
            for playlist in playlists:
                if not playlist.title.startswith(RECOMMENDED_PLAYLIST_PREFIX):
                    continue
                try:
                    items = await client.get_playlist_items(playlist.id)
                except YouTubeError as e:
                    logger.warning(f"[TOOL] Failed to fetch items for playlist {playlist.title}: {e}")
                    continue
                except (UpstreamError, TokenStorageError) as e:
                    raise to_tool_error("get playlist items", e) from e
                if items:
                    out.append(f"From playlist '{playlist.title}':")
                    out.extend(f"- {v.title} - {v.channel_title}" for v in items)
                    found += len(items)
            if not found:
                out.append("No previously recommended songs found.")
            out.append("")

        return "\n".join(out)

    # ============== Recommendations ==============

    @mcp.tool()
    async def recommend_playlist(number_of_songs: int, description: str = "") -> str:
        """Create a playlist of recommended music in one call.

        Gathers taste data, searches for songs matching the description (or the
        user's top artists when no description is given), creates a private
        "[YM-MCP]" playlist and adds the songs to it.

        WARNING: each search costs 100 quota units and this tool runs several.
        Quota cost: ~200-500 units depending on the number of songs.

        Args:
            number_of_songs: Number of songs to find and add (1-50)
            description: What kind of music to find (genres, moods, artists, era).
                If empty, recommendations are based purely on taste analysis.
        """
        logger.info(f"[TOOL] recommend_playlist invoked for {number_of_songs} songs")
        if not 1 <= number_of_songs <= MAX_RECOMMENDED_SONGS:
            raise ToolError(f"number_of_songs must be between 1 and {MAX_RECOMMENDED_SONGS}")
        client = get_client()

        liked = await call("get liked videos", client.get_liked_videos)
        subscriptions = await call("get subscriptions", client.get_subscriptions)
        playlists = await call("list playlists", client.list_playlists)
        top_artists = [name for name, _ in count_artists(liked, subscriptions).most_common(TOP_ARTISTS)]

        max_queries = min(math.ceil(number_of_songs / 3), MAX_RECOMMEND_QUERIES)
        queries = split_description_into_terms(description)[:max_queries] if description else []
        for artist in top_artists:
            if len(queries) >= max_queries:
                break
            queries.append(artist)

        video_ids: list[str] = []
        summary = ["Search queries executed:"]
        for query in queries:
            try:
                results = await client.search_videos(query, RESULTS_PER_QUERY)
            except YouTubeError as e:
                logger.warning(f"[TOOL] Search failed for '{query}': {e}")
                summary.append(f"- '{query}' (failed)")
                continue
            except (UpstreamError, TokenStorageError) as e:
                raise to_tool_error("search videos", e) from e

            summary.append(f"- '{query}' ({len(results)} results)")
            for result in results:
                if result.video_id not in video_ids:
                    video_ids.append(result.video_id)
                if len(video_ids) >= number_of_songs:
                    break
            if len(video_ids) >= number_of_songs:
                break

        if not video_ids:
            raise ToolError("No videos found for the given criteria")

        title = f"{RECOMMENDED_PLAYLIST_PREFIX} Recommended Mix"
        if description.strip():
            title = f"{RECOMMENDED_PLAYLIST_PREFIX} {' '.join(description.split()[:4])}"

        playlist = await call("create playlist", client.create_playlist, title, description, "private")
        added = await call("add videos to playlist", client.add_videos_to_playlist, playlist.id, video_ids)
        quota = len(queries) * 100 + 50 + added * 50

        out = [f"# Playlist Created: {playlist.title}", ""]
        out.append(f"**YouTube Music URL:** https://music.youtube.com/playlist?list={playlist.id}")
        out.append("")
        out.append(f"**Songs added:** {added} of {number_of_songs} requested")
        out.append("")
        out.append(f"**Taste context:** {len(liked)} liked songs, {len(subscriptions)} subscriptions, "
                   f"{len(playlists)} playlists analyzed")
        out.append("")
        out.append(f"**Top artists in your taste:** {', '.join(top_artists[:5])}")
        out.append("")
        out.extend(summary)
        out.append("")
        out.append(f"**Estimated quota usage:** ~{quota} units ({len(queries)} searches x 100 "
                   f"+ 50 playlist creation + {added} x 50 adds)")
        return "\n".join(out)

    async def recommendation_context(kind: str, description: str, instruction: str) -> str:
        client = get_client()
        liked = await call("get liked videos", client.get_liked_videos)
        subscriptions = await call("get subscriptions", client.get_subscriptions)
        artists = list(count_artists(liked, subscriptions))

        out = [f"# {kind} Recommendation Context", ""]
        if description:
            out.extend([f"**User request:** {description}", ""])
        out.append(f"## Your Current Artists ({len(artists)} unique artists)")
        out.append("")
        out.extend(f"- {artist}" for artist in artists)
        out.append("")
        out.append("## Taste Profile")
        out.append("")
        out.append(f"- Based on {len(liked)} liked songs and {len(subscriptions)} subscriptions")
        out.append("- The artists listed above are already known to the user")
        out.append("")
        out.append("## Instruction for LLM")
        out.append("")
        out.append(instruction)
        return "\n".join(out)

    @mcp.tool()
    async def recommend_artists(description: str = "") -> str:
        """Recommend artists based on the user's YouTube Music taste.

        Returns taste data for the LLM to generate recommendations from its own
        knowledge. Does not search YouTube. Quota cost: ~5 units.

        Args:
            description: What kind of artists to recommend (genre, mood, any guidance)
        """
        logger.info("[TOOL] recommend_artists invoked")
        return await recommendation_context("Artist", description, (
            "Based on this taste data, recommend artists the user hasn't heard. Use your knowledge "
            "of music genres, similar artists, and musical styles to suggest new artists that align "
            "with the user's demonstrated preferences."
        ))

    @mcp.tool()
    async def recommend_albums(description: str = "") -> str:
        """Recommend albums based on the user's YouTube Music taste.

        Returns taste data for the LLM to generate recommendations from its own
        knowledge. Does not search YouTube. Quota cost: ~5 units.

        Args:
            description: What kind of albums to recommend (genre, mood, era, any guidance)
        """
        logger.info("[TOOL] recommend_albums invoked")
        return await recommendation_context("Album", description, (
            "Based on this taste data, recommend albums the user would enjoy. Use your knowledge "
            "of music genres, discographies, and musical styles to suggest albums that align with "
            "the user's demonstrated preferences."
        ))

    return mcp
