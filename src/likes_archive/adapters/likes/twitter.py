"""Twitter API v2 adapter for a user's liked tweets."""

from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from likes_archive.adapters.likes.base import (
    CredentialExpiredError,
    LikesSource,
    MalformedResponseError,
    RateLimitedError,
    SourceError,
    TransientSourceError,
)
from likes_archive.adapters.likes.twitter_oauth import (
    OAuthConfig,
    OAuthError,
    OAuthTransportError,
    refresh_access_token,
)
from likes_archive.config import settings
from likes_archive.domain.enums import MediaType
from likes_archive.domain.models import (
    Author,
    HashtagAnnotation,
    LikesPage,
    MediaItem,
    MentionAnnotation,
    OAuthToken,
    Post,
    UrlAnnotation,
)
from likes_archive.logging import get_logger

logger = get_logger(__name__)

LIKED_TWEETS_PATH = "/2/users/{user_id}/liked_tweets"

# Refresh access tokens this long before they expire
TOKEN_REFRESH_BUFFER = timedelta(minutes=5)

LIKED_TWEETS_PARAMS = {
    "expansions": "author_id,attachments.media_keys,in_reply_to_user_id",
    "tweet.fields": "id,text,created_at,author_id,in_reply_to_user_id,source,entities,attachments",
    "user.fields": "id,name,username,created_at",
    "media.fields": "media_key,type,url,variants",
}


class TwitterLikesSource(LikesSource):
    """Fetches liked tweets page by page.

    Keeps its OAuth token current: the token is refreshed shortly before it
    expires and once more if the API answers 401. The rotated token is exposed
    through `token` so the caller can persist it.
    """

    def __init__(
        self,
        token: OAuthToken,
        page_size: int | None = None,
        client: httpx.AsyncClient | None = None,
        oauth_config: OAuthConfig | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            token: The session's OAuth token.
            page_size: Liked tweets requested per page.
            client: HTTP client to use, created on first request if omitted.
            oauth_config: OAuth client configuration used for refreshes.
        """
        self._token = token
        self.page_size = page_size or settings.likes_page_size
        self._client = client
        self._oauth_config = oauth_config

    @property
    def token(self) -> OAuthToken:
        return self._token

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=settings.twitter_api_base_url,
                timeout=settings.source_request_timeout,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _refresh_token(self) -> None:
        """Rotate the token pair.

        Raises:
            TransientSourceError: If the token endpoint could not be reached.
            CredentialExpiredError: If the refresh is rejected.
        """
        logger.info("twitter_token_refresh")
        try:
            self._token = await refresh_access_token(
                self._token.refresh_token, self._oauth_config
            )
        except OAuthTransportError as e:
            raise TransientSourceError(str(e)) from e
        except OAuthError as e:
            raise CredentialExpiredError(str(e)) from e

    async def _get_page(self, user_id: str, cursor: str | None) -> httpx.Response:
        client = await self._get_client()
        params: dict[str, Any] = {**LIKED_TWEETS_PARAMS, "max_results": self.page_size}
        if cursor:
            params["pagination_token"] = cursor

        try:
            return await client.get(
                LIKED_TWEETS_PATH.format(user_id=user_id),
                params=params,
                headers={"Authorization": f"Bearer {self._token.access_token}"},
            )
        except httpx.HTTPError as e:
            raise TransientSourceError(f"Request for liked tweets of {user_id} failed: {e}") from e

    async def fetch_liked_posts_page(
        self,
        user_id: str,
        cursor: str | None = None,
    ) -> LikesPage:
        """Fetch one page of liked tweets, newest first."""
        logger.debug("twitter_fetch_likes_page", user_id=user_id, cursor=cursor)

        if self._token.expires_within(TOKEN_REFRESH_BUFFER):
            await self._refresh_token()

        response = await self._get_page(user_id, cursor)

        if response.status_code == 401:
            logger.warning("twitter_unauthorized", user_id=user_id)
            await self._refresh_token()
            response = await self._get_page(user_id, cursor)
            if response.status_code == 401:
                raise CredentialExpiredError(
                    f"Access token for liked tweets of {user_id} was rejected after refresh"
                )

        if response.status_code == 429:
            reset = response.headers.get("x-rate-limit-reset")
            reset_at = datetime.fromtimestamp(int(reset), UTC) if reset and reset.isdigit() else None
            logger.error("twitter_rate_limited", user_id=user_id, reset_at=reset_at)
            raise RateLimitedError(f"Rate limited fetching likes of {user_id}", reset_at=reset_at)

        if response.status_code >= 500:
            logger.error(
                "twitter_api_error",
                status=response.status_code,
                body=response.text[:500],
            )
            raise TransientSourceError(f"Twitter API error: {response.status_code}")

        if response.status_code != 200:
            logger.error(
                "twitter_api_rejected",
                status=response.status_code,
                body=response.text[:500],
            )
            raise SourceError(f"Twitter API rejected request: {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise MalformedResponseError(f"Likes result for {user_id} is not valid JSON") from e

        page = parse_liked_tweets(body, user_id)
        logger.debug(
            "twitter_likes_page_parsed",
            user_id=user_id,
            count=len(page.posts),
            has_next=page.next_cursor is not None,
        )
        return page


def _parse_datetime(value: Any, what: str) -> datetime:
    if not isinstance(value, str):
        raise MalformedResponseError(f"{what} has no valid created_at")
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise MalformedResponseError(f"{what} has an invalid created_at: {value!r}") from e


def _format_errors(errors: list[Any]) -> str:
    return "\n".join(
        (
            e.get("title", "error") + (f": {e['detail']}" if e.get("detail") else "")
            if isinstance(e, dict)
            else str(e)
        )
        for e in errors
    )


def _missing_keys(item: Any, keys: tuple[str, ...]) -> list[str]:
    if not isinstance(item, dict):
        return list(keys)
    return [k for k in keys if item.get(k) in (None, "")]


def parse_liked_tweets(body: Any, user_id: str) -> LikesPage:
    """Validate a liked tweets response and convert it into a LikesPage.

    Args:
        body: Decoded JSON response.
        user_id: The user whose likes were requested, for error messages.

    Returns:
        The parsed page.

    Raises:
        MalformedResponseError: If the body is not an object or required
            fields are missing.
    """
    if not isinstance(body, dict):
        raise MalformedResponseError(f"Likes result for {user_id} is not a JSON object")

    data = body.get("data")
    if body.get("errors") and not data:
        errors = body["errors"]
        raise MalformedResponseError(
            _format_errors(errors if isinstance(errors, list) else [errors])
        )

    meta = body.get("meta")
    if not isinstance(meta, dict):
        raise MalformedResponseError(f"Likes result for {user_id} is missing the key 'meta'")
    next_cursor = meta.get("next_token")

    # The terminal page of an exhausted history carries only meta
    if not data:
        return LikesPage(posts=[], next_cursor=next_cursor)
    if not isinstance(data, list):
        raise MalformedResponseError(f"Likes result for {user_id} has a non-list 'data'")

    includes = body.get("includes") or {}
    users = includes.get("users") if isinstance(includes, dict) else None
    if not isinstance(users, list):
        raise MalformedResponseError(
            f"Likes result for {user_id} is missing the key 'includes.users'"
        )

    malformed_users: list[str] = []
    for u in users:
        missing = _missing_keys(u, ("id", "name", "username", "created_at"))
        if missing:
            uid = u.get("id") if isinstance(u, dict) else None
            malformed_users.append(f"{uid}: {missing}")
    if malformed_users:
        raise MalformedResponseError(
            f"Likes result for {user_id} contains users missing required keys: "
            + ", ".join(malformed_users)
        )

    authors = {
        u["id"]: Author(
            id=u["id"],
            name=u["name"],
            username=u["username"],
            created_at=_parse_datetime(u["created_at"], f"User {u['id']}"),
        )
        for u in users
    }
    media = includes.get("media") or []
    media_by_key = {
        m["media_key"]: m for m in media if isinstance(m, dict) and m.get("media_key")
    }

    posts: list[Post] = []
    errors: list[str] = []
    for tweet in data:
        try:
            posts.append(_map_tweet(tweet, authors, media_by_key))
        except MalformedResponseError as e:
            errors.append(str(e))

    if errors:
        raise MalformedResponseError(
            "Tweet response contained the following errors:\n" + "\n".join(errors)
        )

    return LikesPage(posts=posts, next_cursor=next_cursor)


def _entities(
    tweet_id: str,
    entities: dict[str, Any],
    kind: str,
    field: str,
) -> list[dict[str, Any]]:
    """Entities of one kind, each checked for its offsets and payload field."""
    items = entities.get(kind) or []
    if not isinstance(items, list):
        raise MalformedResponseError(f"Tweet {tweet_id} has a non-list '{kind}' entity")

    for item in items:
        missing = _missing_keys(item, ("start", "end", field))
        if missing:
            raise MalformedResponseError(
                f"Tweet {tweet_id} has a {kind} entity missing required keys: {missing}"
            )
        if not isinstance(item["start"], int) or not isinstance(item["end"], int):
            raise MalformedResponseError(
                f"Tweet {tweet_id} has a {kind} entity with non-integer offsets"
            )
    return items


def _map_tweet(
    tweet: Any,
    authors: dict[str, Author],
    media_by_key: dict[str, dict[str, Any]],
) -> Post:
    if not isinstance(tweet, dict):
        raise MalformedResponseError(f"Tweet entry is not an object: {tweet!r}")

    tweet_id = tweet.get("id")
    missing = [k for k in ("id", "author_id", "created_at") if not tweet.get(k)]
    if tweet.get("text") is None:
        missing.append("text")
    if missing:
        raise MalformedResponseError(f"Tweet {tweet_id} is missing required keys: {missing}")

    author = authors.get(tweet["author_id"])
    if author is None:
        raise MalformedResponseError(
            f"Response for {tweet_id} did not include a matching user with id {tweet['author_id']}"
        )

    reply_to = None
    reply_to_id = tweet.get("in_reply_to_user_id")
    if reply_to_id:
        reply_to = authors.get(reply_to_id)
        if reply_to is None:
            logger.debug("twitter_reply_user_not_expanded", tweet_id=tweet_id, user_id=reply_to_id)

    entities = tweet.get("entities") or {}
    if not isinstance(entities, dict):
        raise MalformedResponseError(f"Tweet {tweet_id} has non-object entities")

    return Post(
        id=tweet_id,
        text=tweet["text"],
        created_at=_parse_datetime(tweet["created_at"], f"Tweet {tweet_id}"),
        author=author,
        media=_map_media(tweet, media_by_key),
        in_reply_to_user=reply_to,
        source=tweet.get("source"),
        hashtags=[
            HashtagAnnotation(start=h["start"], end=h["end"], tag=h["tag"])
            for h in _entities(tweet_id, entities, "hashtags", "tag")
        ],
        mentions=[
            MentionAnnotation(start=m["start"], end=m["end"], username=m["username"])
            for m in _entities(tweet_id, entities, "mentions", "username")
        ],
        urls=[
            UrlAnnotation(
                start=u["start"],
                end=u["end"],
                url=u["url"],
                expanded_url=u.get("expanded_url"),
                display_url=u.get("display_url"),
            )
            for u in _entities(tweet_id, entities, "urls", "url")
        ],
    )


def _map_media(tweet: dict[str, Any], media_by_key: dict[str, dict[str, Any]]) -> list[MediaItem]:
    attachments = tweet.get("attachments") or {}
    media_keys = attachments.get("media_keys") if isinstance(attachments, dict) else None
    if media_keys is None:
        media_keys = []
    if not isinstance(media_keys, list) or not all(isinstance(k, str) for k in media_keys):
        raise MalformedResponseError(f"Tweet {tweet.get('id')} has malformed media keys")
    items: list[MediaItem] = []

    for key in media_keys:
        media = media_by_key.get(key)
        if media is None:
            raise MalformedResponseError(
                f"Attachment for {tweet.get('id')} did not include a matching media item {key}"
            )

        try:
            media_type = MediaType(media.get("type"))
        except ValueError:
            logger.warning("twitter_media_type_unrecognized", media_key=key, type=media.get("type"))
            continue

        if media_type == MediaType.PHOTO:
            url = media.get("url")
        else:
            url = select_best_variant(media.get("variants") or [])

        if not url:
            logger.warning("twitter_media_url_missing", media_key=key)
            continue

        items.append(MediaItem(media_key=key, type=media_type, url=url))

    return items


def select_best_variant(variants: list[dict[str, Any]]) -> str | None:
    """Pick the URL of the highest-bitrate variant.

    Variants without a bit rate (such as HLS playlists) rank lowest.
    """
    variants = [v for v in variants if isinstance(v, dict)]
    if not variants:
        return None
    ranked = sorted(variants, key=lambda v: v.get("bit_rate") or -1)
    return ranked[-1].get("url")
