"""Render post text with its annotations as inline links."""

import re
from collections.abc import Sequence
from html import escape

from likes_archive.db.models import PostModel
from likes_archive.domain.models import (
    Annotation,
    HashtagAnnotation,
    MentionAnnotation,
    UrlAnnotation,
)

TWITTER_BASE_URL = "https://twitter.com"


def _is_self_link(post_id: str, annotation: UrlAnnotation) -> bool:
    if not annotation.expanded_url:
        return False
    pattern = rf"https?://twitter\.com/\S*/status/{re.escape(post_id)}(?:[/?#]|$)"
    return re.match(pattern, annotation.expanded_url) is not None


def _replacement(annotation: Annotation, ignore_self_link: str | None) -> str:
    # Annotation values are escaped in both the href and the link text
    if isinstance(annotation, HashtagAnnotation):
        tag = escape(annotation.tag)
        return f'<a href="{TWITTER_BASE_URL}/hashtag/{tag}">#{tag}</a>'
    if isinstance(annotation, MentionAnnotation):
        username = escape(annotation.username)
        return f'<a href="{TWITTER_BASE_URL}/{username}">@{username}</a>'
    if ignore_self_link and _is_self_link(ignore_self_link, annotation):
        return ""
    href = escape(annotation.expanded_url or annotation.url)
    return f'<a href="{href}">{escape(annotation.display_url or annotation.url)}</a>'


def render_annotations(
    text: str,
    annotations: Sequence[Annotation],
    ignore_self_link: str | None = None,
) -> str:
    """Replace each annotated range of text with a link.

    Offsets are code point indexes, which is what indexing a str uses, so
    emoji and other astral characters count as one position. Only the first
    annotation for each start offset is kept. Replacements run from the last
    start offset to the first so earlier offsets stay valid.

    Args:
        text: The post text.
        annotations: Hashtag, mention and link annotations in any order.
        ignore_self_link: Post id whose own status links are dropped from the
            output (a post quoting itself links to its own page).

    Returns:
        The text with annotation ranges replaced.
    """
    first_by_start: dict[int, Annotation] = {}
    for annotation in annotations:
        first_by_start.setdefault(annotation.start, annotation)

    rendered = text
    for start in sorted(first_by_start, reverse=True):
        annotation = first_by_start[start]
        replacement = _replacement(annotation, ignore_self_link)
        rendered = rendered[:start] + replacement + rendered[annotation.end :]

    return rendered


def post_annotations(post: PostModel) -> list[Annotation]:
    """Collect the stored annotations of a post as domain objects."""
    annotations: list[Annotation] = [
        HashtagAnnotation(start=h.start, end=h.end, tag=h.hashtag.tag) for h in post.hashtags
    ]
    annotations.extend(
        MentionAnnotation(start=m.start, end=m.end, username=m.username) for m in post.mentions
    )
    annotations.extend(
        UrlAnnotation(
            start=u.start,
            end=u.end,
            url=u.url,
            expanded_url=u.expanded_url,
            display_url=u.display_url,
        )
        for u in post.urls
    )
    return annotations


def render_post(post: PostModel) -> str:
    """Render a stored post's text with links, dropping links to itself."""
    return render_annotations(post.text, post_annotations(post), ignore_self_link=post.id)
