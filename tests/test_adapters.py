"""Tests for liked-post source adapters."""

import time
from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs

import httpx
import pytest

from conftest import make_page
from likes_archive.adapters.likes.base import (
    CredentialExpiredError,
    MalformedResponseError,
    RateLimitedError,
    SourceError,
    TransientSourceError,
)
from likes_archive.adapters.likes.stub import StubLikesSource
from likes_archive.adapters.likes.twitter import (
    TwitterLikesSource,
    parse_liked_tweets,
    select_best_variant,
)
from likes_archive.adapters.likes.twitter_oauth import (
    OAuthConfig,
    OAuthError,
    OAuthTransportError,
    refresh_access_token,
)
from likes_archive.domain.enums import MediaType
from likes_archive.domain.models import OAuthToken

REFRESH_PATH = "likes_archive.adapters.likes.twitter.refresh_access_token"


def liked_tweets_body(next_token: str | None = "next-1") -> dict:
    """A realistic liked tweets response with one photo and one video tweet."""
    meta = {"result_count": 2}
    if next_token:
        meta["next_token"] = next_token
    return {
        "data": [
            {
                "id": "2001",
                "text": "Look at #Cats with @kitty",
                "created_at": "2024-02-01T10:00:00.000Z",
                "author_id": "u1",
                "source": "Twitter for iPhone",
                "attachments": {"media_keys": ["3_1"]},
                "entities": {
                    "hashtags": [{"start": 8, "end": 13, "tag": "Cats"}],
                    "mentions": [{"start": 19, "end": 25, "username": "kitty", "id": "u2"}],
                },
            },
            {
                "id": "2000",
                "text": "@kitty a video",
                "created_at": "2024-01-31T09:00:00.000Z",
                "author_id": "u2",
                "in_reply_to_user_id": "u1",
                "attachments": {"media_keys": ["7_1"]},
            },
        ],
        "includes": {
            "users": [
                {
                    "id": "u1",
                    "name": "Cat Fan",
                    "username": "catfan",
                    "created_at": "2010-05-05T00:00:00.000Z",
                },
                {
                    "id": "u2",
                    "name": "Kitty",
                    "username": "kitty",
                    "created_at": "2011-06-06T00:00:00.000Z",
                },
            ],
            "media": [
                {"media_key": "3_1", "type": "photo", "url": "https://pbs.test/cat.jpg"},
                {
                    "media_key": "7_1",
                    "type": "video",
                    "variants": [
                        {"content_type": "application/x-mpegURL", "url": "https://video.test/pl.m3u8"},
                        {"bit_rate": 832000, "content_type": "video/mp4", "url": "https://video.test/mid.mp4"},
                        {"bit_rate": 2176000, "content_type": "video/mp4", "url": "https://video.test/hi.mp4"},
                        {"bit_rate": 256000, "content_type": "video/mp4", "url": "https://video.test/lo.mp4"},
                    ],
                },
            ],
        },
        "meta": meta,
    }


class TestParseLikedTweets:
    """Tests for parse_liked_tweets."""

    def test_maps_tweets_users_and_media(self) -> None:
        """Test a full response becomes posts in source order."""
        page = parse_liked_tweets(liked_tweets_body(), "u0")

        assert page.next_cursor == "next-1"
        assert [p.id for p in page.posts] == ["2001", "2000"]

        first, second = page.posts
        assert first.author.username == "catfan"
        assert first.created_at == datetime(2024, 2, 1, 10, 0, tzinfo=UTC)
        assert first.source == "Twitter for iPhone"
        assert first.media[0].type == MediaType.PHOTO
        assert first.media[0].url == "https://pbs.test/cat.jpg"
        assert first.hashtags[0].tag == "Cats"
        assert first.mentions[0].username == "kitty"

        assert second.in_reply_to_user.id == "u1"
        assert second.media[0].type == MediaType.VIDEO
        assert second.media[0].url == "https://video.test/hi.mp4"

    def test_terminal_page_with_only_meta(self) -> None:
        """Test an exhausted history yields an empty final page."""
        page = parse_liked_tweets({"meta": {"result_count": 0}}, "u0")

        assert page.posts == []
        assert page.next_cursor is None

    def test_missing_meta_is_malformed(self) -> None:
        """Test a response without meta is rejected."""
        body = liked_tweets_body()
        del body["meta"]

        with pytest.raises(MalformedResponseError, match="meta"):
            parse_liked_tweets(body, "u0")

    def test_user_without_created_at_is_malformed(self) -> None:
        """Test expanded users must carry created_at."""
        body = liked_tweets_body()
        del body["includes"]["users"][0]["created_at"]

        with pytest.raises(MalformedResponseError, match="created_at"):
            parse_liked_tweets(body, "u0")

    @pytest.mark.parametrize("key", ["name", "username"])
    def test_user_without_required_field_is_malformed(self, key: str) -> None:
        """Test expanded users must carry their name and handle."""
        body = liked_tweets_body()
        del body["includes"]["users"][0][key]

        with pytest.raises(MalformedResponseError, match=key):
            parse_liked_tweets(body, "u0")

    def test_user_with_unparseable_created_at_is_malformed(self) -> None:
        """Test a garbled timestamp is reported as malformed."""
        body = liked_tweets_body()
        body["includes"]["users"][0]["created_at"] = "yesterday"

        with pytest.raises(MalformedResponseError, match="yesterday"):
            parse_liked_tweets(body, "u0")

    @pytest.mark.parametrize(
        ("kind", "key"),
        [("hashtags", "start"), ("hashtags", "tag"), ("mentions", "end"), ("mentions", "username")],
    )
    def test_entity_without_required_field_is_malformed(self, kind: str, key: str) -> None:
        """Test annotation entities must carry their offsets and payload."""
        body = liked_tweets_body()
        del body["data"][0]["entities"][kind][0][key]

        with pytest.raises(MalformedResponseError, match=key):
            parse_liked_tweets(body, "u0")

    def test_url_entity_without_offsets_is_malformed(self) -> None:
        """Test link entities are validated like the others."""
        body = liked_tweets_body()
        body["data"][0]["entities"]["urls"] = [{"url": "https://t.co/x"}]

        with pytest.raises(MalformedResponseError, match="urls"):
            parse_liked_tweets(body, "u0")

    @pytest.mark.parametrize("body", [[], "oops", None])
    def test_non_object_body_is_malformed(self, body) -> None:
        """Test a body that is not a JSON object is rejected."""
        with pytest.raises(MalformedResponseError):
            parse_liked_tweets(body, "u0")

    def test_non_object_tweet_is_malformed(self) -> None:
        """Test entries of data must be objects."""
        body = liked_tweets_body()
        body["data"].append("2002")

        with pytest.raises(MalformedResponseError, match="not an object"):
            parse_liked_tweets(body, "u0")

    def test_unexpanded_author_is_malformed(self) -> None:
        """Test a tweet whose author is not in includes is rejected."""
        body = liked_tweets_body()
        body["includes"]["users"] = body["includes"]["users"][1:]

        with pytest.raises(MalformedResponseError, match="u1"):
            parse_liked_tweets(body, "u0")

    def test_tweet_missing_text_is_malformed(self) -> None:
        """Test required tweet fields are validated."""
        body = liked_tweets_body()
        del body["data"][0]["text"]

        with pytest.raises(MalformedResponseError, match="text"):
            parse_liked_tweets(body, "u0")

    def test_error_only_response_is_malformed(self) -> None:
        """Test API errors without data are surfaced."""
        body = {"errors": [{"title": "Not Found Error", "detail": "Could not find user"}]}

        with pytest.raises(MalformedResponseError, match="Could not find user"):
            parse_liked_tweets(body, "u0")


def test_select_best_variant() -> None:
    """Test the highest bitrate wins and unrated variants rank last."""
    variants = [
        {"url": "playlist"},
        {"bit_rate": 100, "url": "low"},
        {"bit_rate": 900, "url": "high"},
    ]

    assert select_best_variant(variants) == "high"
    assert select_best_variant([{"url": "playlist"}]) == "playlist"
    assert select_best_variant([]) is None


class TestTwitterLikesSource:
    """Tests for TwitterLikesSource."""

    @staticmethod
    def make_source(handler, token: OAuthToken | None = None) -> TwitterLikesSource:
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            base_url="https://api.twitter.test",
        )
        return TwitterLikesSource(
            token or OAuthToken(access_token="access-1", refresh_token="refresh-1"),
            page_size=50,
            client=client,
        )

    @pytest.mark.asyncio
    async def test_fetch_sends_cursor_and_auth(self) -> None:
        """Test the request carries the bearer token and pagination token."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=liked_tweets_body(next_token=None))

        source = self.make_source(handler)
        page = await source.fetch_liked_posts_page("u0", cursor="abc")
        await source.aclose()

        request = seen[0]
        assert request.url.path == "/2/users/u0/liked_tweets"
        assert request.url.params["pagination_token"] == "abc"
        assert request.url.params["max_results"] == "50"
        assert request.headers["Authorization"] == "Bearer access-1"
        assert page.next_cursor is None
        assert len(page.posts) == 2

    @pytest.mark.asyncio
    async def test_rate_limit(self) -> None:
        """Test HTTP 429 raises RateLimitedError with the reset time."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, headers={"x-rate-limit-reset": "1700000000"})

        source = self.make_source(handler)

        with pytest.raises(RateLimitedError) as exc_info:
            await source.fetch_liked_posts_page("u0")
        assert exc_info.value.reset_at == datetime.fromtimestamp(1700000000, UTC)
        assert isinstance(exc_info.value, TransientSourceError)

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self) -> None:
        """Test 5xx responses raise TransientSourceError."""
        source = self.make_source(lambda request: httpx.Response(503, text="over capacity"))

        with pytest.raises(TransientSourceError):
            await source.fetch_liked_posts_page("u0")

    @pytest.mark.asyncio
    async def test_client_error_is_a_source_error(self) -> None:
        """Test other rejections raise SourceError."""
        source = self.make_source(lambda request: httpx.Response(403, text="forbidden"))

        with pytest.raises(SourceError) as exc_info:
            await source.fetch_liked_posts_page("u0")
        assert not isinstance(exc_info.value, TransientSourceError)

    @pytest.mark.asyncio
    async def test_invalid_json_is_malformed(self) -> None:
        """Test a non-JSON body raises MalformedResponseError."""
        source = self.make_source(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(MalformedResponseError):
            await source.fetch_liked_posts_page("u0")

    @pytest.mark.asyncio
    async def test_unauthorized_refreshes_once(self) -> None:
        """Test a 401 triggers a refresh and the retried request uses the new token."""
        rotated = OAuthToken(access_token="access-2", refresh_token="refresh-2")

        def handler(request: httpx.Request) -> httpx.Response:
            if request.headers["Authorization"] == "Bearer access-1":
                return httpx.Response(401)
            return httpx.Response(200, json=liked_tweets_body())

        source = self.make_source(handler)

        with patch(REFRESH_PATH, new_callable=AsyncMock, return_value=rotated) as refresh:
            page = await source.fetch_liked_posts_page("u0")

        refresh.assert_called_once()
        assert refresh.call_args.args[0] == "refresh-1"
        assert source.token == rotated
        assert len(page.posts) == 2

    @pytest.mark.asyncio
    async def test_unauthorized_after_refresh_expires_credential(self) -> None:
        """Test a second 401 raises CredentialExpiredError."""
        rotated = OAuthToken(access_token="access-2", refresh_token="refresh-2")
        source = self.make_source(lambda request: httpx.Response(401))

        with patch(REFRESH_PATH, new_callable=AsyncMock, return_value=rotated):
            with pytest.raises(CredentialExpiredError):
                await source.fetch_liked_posts_page("u0")

    @pytest.mark.asyncio
    async def test_failed_refresh_expires_credential(self) -> None:
        """Test a rejected refresh raises CredentialExpiredError."""
        source = self.make_source(lambda request: httpx.Response(401))

        with patch(REFRESH_PATH, new_callable=AsyncMock, side_effect=OAuthError("invalid_grant")):
            with pytest.raises(CredentialExpiredError):
                await source.fetch_liked_posts_page("u0")

    @pytest.mark.asyncio
    async def test_unreachable_token_endpoint_is_transient(self) -> None:
        """Test a network failure while refreshing is retryable, not an expired credential."""
        source = self.make_source(lambda request: httpx.Response(401))

        with patch(
            REFRESH_PATH,
            new_callable=AsyncMock,
            side_effect=OAuthTransportError("connection refused"),
        ):
            with pytest.raises(TransientSourceError) as exc_info:
                await source.fetch_liked_posts_page("u0")
        assert not isinstance(exc_info.value, CredentialExpiredError)
        assert source.token.access_token == "access-1"

    @pytest.mark.asyncio
    async def test_expiring_token_is_refreshed_before_request(self) -> None:
        """Test a token about to expire is rotated proactively."""
        expiring = OAuthToken(
            access_token="access-1",
            refresh_token="refresh-1",
            expires_at=int(time.time()) + 60,
        )
        rotated = OAuthToken(access_token="access-2", refresh_token="refresh-2")
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["Authorization"])
            return httpx.Response(200, json=liked_tweets_body())

        source = self.make_source(handler, token=expiring)

        with patch(REFRESH_PATH, new_callable=AsyncMock, return_value=rotated):
            await source.fetch_liked_posts_page("u0")

        assert seen == ["Bearer access-2"]
        assert source.token == rotated


class TestRefreshAccessToken:
    """Tests for the OAuth refresh grant."""

    @staticmethod
    def make_client(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            base_url="https://api.twitter.test",
        )

    @pytest.mark.asyncio
    async def test_refresh_returns_rotated_pair(self) -> None:
        """Test a successful refresh returns both new tokens and an expiry."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={"access_token": "new-access", "refresh_token": "new-refresh", "expires_in": 7200},
            )

        token = await refresh_access_token(
            "old-refresh", OAuthConfig(client_id="cid"), client=self.make_client(handler)
        )

        assert token.access_token == "new-access"
        assert token.refresh_token == "new-refresh"
        assert token.expires_at > int(time.time()) + 7000
        request = seen[0]
        assert request.url.path == "/2/oauth2/token"
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "old-refresh"
        assert "Authorization" not in request.headers

    @pytest.mark.asyncio
    async def test_confidential_client_uses_basic_auth(self) -> None:
        """Test a client secret is sent as basic auth."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"access_token": "a", "refresh_token": "r"})

        token = await refresh_access_token(
            "old",
            OAuthConfig(client_id="cid", client_secret="sec"),
            client=self.make_client(handler),
        )

        assert seen[0].headers["Authorization"].startswith("Basic ")
        assert token.expires_at is None

    @pytest.mark.asyncio
    async def test_invalid_grant_raises(self) -> None:
        """Test a revoked refresh token raises OAuthError."""
        client = self.make_client(lambda request: httpx.Response(400, json={"error": "invalid_grant"}))

        with pytest.raises(OAuthError, match="log in again") as exc_info:
            await refresh_access_token("old", OAuthConfig(client_id="cid"), client=client)
        assert not isinstance(exc_info.value, OAuthTransportError)

    @pytest.mark.asyncio
    async def test_network_error_is_a_transport_error(self) -> None:
        """Test an unreachable token endpoint raises OAuthTransportError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(OAuthTransportError):
            await refresh_access_token(
                "old", OAuthConfig(client_id="cid"), client=self.make_client(handler)
            )

    @pytest.mark.asyncio
    async def test_server_error_is_a_transport_error(self) -> None:
        """Test a failing token endpoint raises OAuthTransportError."""
        client = self.make_client(lambda request: httpx.Response(503))

        with pytest.raises(OAuthTransportError):
            await refresh_access_token("old", OAuthConfig(client_id="cid"), client=client)


class TestStubLikesSource:
    """Tests for StubLikesSource."""

    @pytest.mark.asyncio
    async def test_pages_link_by_cursor(self) -> None:
        """Test scripted pages are chained and the last one is terminal."""
        source = StubLikesSource([make_page("A"), make_page("B")])

        first = await source.fetch_liked_posts_page("u0")
        second = await source.fetch_liked_posts_page("u0", first.next_cursor)

        assert first.next_cursor == "page-1"
        assert second.next_cursor is None
        assert [p.id for p in second.posts] == ["B"]
