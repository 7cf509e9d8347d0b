"""Shared notification formatting helpers.

Keeping formatting here prevents drift between adapters and keeps messages
consistent regardless of delivery channel.
"""

from __future__ import annotations

import html

from core.models import DailySummary, Message

DIVIDER = "──────────────"


def _escape_md(value: str) -> str:
    for ch in r"*[`_":
        value = value.replace(ch, f"\\{ch}")
    return value


def _timestamp(message: Message) -> str:
    return message.received_at.astimezone().strftime("%H:%M:%S %d-%m-%Y")


def _format_important_markdown(message: Message, snippet_chars: int) -> str:
    """Create the Markdown alert body used by Saved Messages."""

    lines = [
        f"[{_timestamp(message)}]",
        f"**Group:**  {_escape_md(message.group)}",
        f"**From:**   {_escape_md(message.sender)}",
        f"**Score:**  {message.importance_score:.2f} ({message.method.value})",
        DIVIDER,
        "",
        _escape_md(message.content[:snippet_chars].strip()),
        "",
        "**Why:**",
        _escape_md(message.reason),
        DIVIDER,
    ]
    return "\n".join(lines)


def _format_important_html(message: Message, snippet_chars: int) -> str:
    """Create the HTML alert body used by the Bot API adapter."""

    parts = [
        f"[{html.escape(_timestamp(message))}]",
        f"<b>Group:</b> {html.escape(message.group)}",
        f"<b>From:</b> {html.escape(message.sender)}",
        f"<b>Score:</b> {message.importance_score:.2f} ({html.escape(message.method.value)})",
        DIVIDER,
        "",
        html.escape(message.content[:snippet_chars].strip()),
        "",
        "<b>Why:</b>",
        html.escape(message.reason),
        DIVIDER,
    ]
    return "\n".join(parts)


def _format_digest_markdown(summary: DailySummary) -> str:
    lines = [
        f"**Daily digest {summary.date.isoformat()}**",
        f"{summary.total_important} important messages",
        DIVIDER,
    ]
    for entry in summary.per_group:
        lines.extend(
            [
                "",
                f"**{_escape_md(entry.group)}** ({entry.count})",
                _escape_md(entry.summary),
            ]
        )
    lines.append(DIVIDER)
    return "\n".join(lines)


def _format_digest_html(summary: DailySummary) -> str:
    parts = [
        f"<b>Daily digest {summary.date.isoformat()}</b>",
        f"{summary.total_important} important messages",
        DIVIDER,
    ]
    for entry in summary.per_group:
        parts.extend(
            [
                "",
                f"<b>{html.escape(entry.group)}</b> ({entry.count})",
                html.escape(entry.summary),
            ]
        )
    parts.append(DIVIDER)
    return "\n".join(parts)


def _format_plain_important(message: Message, snippet_chars: int) -> str:
    return (
        f"[{message.group}] {message.sender}: {message.content[:snippet_chars].strip()} "
        f"(score {message.importance_score:.2f}, {message.reason})"
    )


def _format_plain_digest(summary: DailySummary) -> str:
    lines = [f"Daily digest {summary.date.isoformat()}: {summary.total_important} important messages"]
    lines.extend(f"  {entry.group} ({entry.count}): {entry.summary}" for entry in summary.per_group)
    return "\n".join(lines)


def format_important(message: Message, snippet_chars: int, mode: str) -> str:
    """Return the important-message alert formatted for the requested mode."""

    if mode == "markdown":
        return _format_important_markdown(message, snippet_chars)
    if mode == "html":
        return _format_important_html(message, snippet_chars)
    if mode == "plain":
        return _format_plain_important(message, snippet_chars)
    raise ValueError(f"Unsupported notification format: {mode}")


def format_digest(summary: DailySummary, mode: str) -> str:
    """Return the daily digest formatted for the requested mode."""

    if mode == "markdown":
        return _format_digest_markdown(summary)
    if mode == "html":
        return _format_digest_html(summary)
    if mode == "plain":
        return _format_plain_digest(summary)
    raise ValueError(f"Unsupported notification format: {mode}")
