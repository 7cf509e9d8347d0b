"""Chat-completions client for remote importance scoring and digests.

Talks to an OpenAI-style ``/chat/completions`` endpoint (Zhipu GLM by
default). Every failure is returned as an ``Outcome`` error so callers can
degrade locally; nothing here raises into the pipeline.
"""

from __future__ import annotations

import asyncio
from datetime import date
import json
import logging
import math
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from core.aggregator import group_messages
from core.config import ClassificationConfig
from core.errors import ClassificationServiceError, ClassificationTimeout
from core.models import AIVerdict, GroupSummary, Message
from core.result import Outcome

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

CLASSIFY_SYSTEM_PROMPT = (
    "You are an assistant that rates how important a group chat message is "
    "for the reader. Judge by content, sender and group context. "
    "Reply with JSON only."
)

SUMMARY_SYSTEM_PROMPT = (
    "You are an assistant that writes a short daily digest of important group "
    "chat messages, one concise summary per group. Reply with JSON only."
)


def extract_json_object(text: str) -> Dict[str, Any]:
    """Return the first well-formed JSON object embedded in ``text``.

    Models often wrap the payload in prose or code fences, so every ``{`` is
    tried as a starting point until one decodes to an object.
    """

    decoder = json.JSONDecoder()
    index = text.find("{")
    while index != -1:
        try:
            value, _ = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            index = text.find("{", index + 1)
            continue
        if isinstance(value, dict):
            return value
        index = text.find("{", index + 1)
    raise ValueError("no JSON object found in model reply")


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def parse_verdict(text: str) -> AIVerdict:
    payload = extract_json_object(text)
    raw_score = float(payload["score"])
    # json accepts NaN and Infinity, which would slip past the clamp.
    if not math.isfinite(raw_score):
        raise ValueError(f"score is not a finite number: {payload['score']!r}")
    score = _clamp(raw_score)
    return AIVerdict(
        is_important=bool(payload.get("isImportant", payload.get("is_important", False))),
        score=score,
        reason=str(payload.get("reason", "")).strip(),
    )


def parse_group_summaries(text: str) -> List[GroupSummary]:
    payload = extract_json_object(text)
    groups = payload.get("groups")
    if not isinstance(groups, list):
        raise ValueError("reply has no 'groups' list")
    summaries: List[GroupSummary] = []
    for entry in groups:
        name = entry.get("groupName") or entry.get("group")
        summary = entry.get("summary")
        if not name or not summary:
            continue
        # Counts are filled from the message log, never from the model.
        summaries.append(GroupSummary(group=str(name), count=0, summary=str(summary).strip()))
    return summaries


def build_classify_prompt(message: Message) -> str:
    return "\n".join(
        [
            "Rate the importance of this group chat message.",
            "",
            f"Group: {message.group}",
            f"Sender: {message.sender}",
            f"Content: {message.content}",
            "",
            "High: work items, deadlines, urgent matters, mentions, task assignments,",
            "meeting notices, announcements.",
            "Low: small talk, stickers, greetings, ads and promotions.",
            "",
            'Return only JSON: {"isImportant": true/false, "score": 0.0-1.0, "reason": "short reason"}',
        ]
    )


def build_summary_prompt(messages: Sequence[Message], day: date) -> str:
    lines = [f"Write the digest of important group chat messages for {day.isoformat()}.", ""]
    for group, items in group_messages(messages).items():
        lines.append(f"[{group}] ({len(items)} messages)")
        lines.extend(f"  {item.sender}: {item.content}" for item in items)
        lines.append("")
    lines.append("Summarize each group in one short sentence.")
    lines.append('Return only JSON: {"groups": [{"groupName": "name", "summary": "text"}]}')
    return "\n".join(lines)


class ChatCompletionsClient:
    """AIServicePort implementation over aiohttp.

    A session is created lazily on the running loop and reused across calls.
    Each call is bounded by ``timeout`` seconds in total.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _complete(
        self,
        config: ClassificationConfig,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        payload = {
            "model": config.ai_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        headers = {"Authorization": f"Bearer {config.ai_credential}"}
        try:
            async with self._get_session().post(config.ai_endpoint, json=payload, headers=headers) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise ClassificationServiceError(f"AI endpoint returned {resp.status}: {body[:200]}")
                data = await resp.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise ClassificationTimeout(f"AI call exceeded {self._timeout.total}s") from exc
        except (aiohttp.ClientError, ValueError) as exc:
            raise ClassificationServiceError(f"AI transport error: {exc}") from exc

        try:
            return str(data["choices"][0]["message"]["content"])
        except (KeyError, IndexError, TypeError) as exc:
            raise ClassificationServiceError("AI reply has no choices[0].message.content") from exc

    async def classify(self, message: Message, config: ClassificationConfig) -> Outcome[AIVerdict]:
        try:
            text = await self._complete(
                config,
                CLASSIFY_SYSTEM_PROMPT,
                build_classify_prompt(message),
                temperature=0.3,
                max_tokens=512,
            )
            verdict = parse_verdict(text)
        except (ClassificationTimeout, ClassificationServiceError) as exc:
            LOGGER.warning("AI classify failed for %s: %s", message.id, exc)
            return Outcome.fail(exc)
        except (ValueError, KeyError, TypeError) as exc:
            LOGGER.warning("AI classify reply for %s was malformed: %s", message.id, exc)
            return Outcome.fail(ClassificationServiceError(f"malformed classification reply: {exc}"))
        return Outcome.ok(verdict)

    async def summarize(
        self,
        messages: Sequence[Message],
        day: date,
        config: ClassificationConfig,
    ) -> Outcome[List[GroupSummary]]:
        try:
            text = await self._complete(
                config,
                SUMMARY_SYSTEM_PROMPT,
                build_summary_prompt(messages, day),
                temperature=0.5,
                max_tokens=2048,
            )
            summaries = parse_group_summaries(text)
        except (ClassificationTimeout, ClassificationServiceError) as exc:
            LOGGER.warning("AI summary failed for %s: %s", day, exc)
            return Outcome.fail(exc)
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            LOGGER.warning("AI summary reply for %s was malformed: %s", day, exc)
            return Outcome.fail(ClassificationServiceError(f"malformed summary reply: {exc}"))
        return Outcome.ok(summaries)
