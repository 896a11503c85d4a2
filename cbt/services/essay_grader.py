"""Optional AI scoring oracle for essay answers.

The automatic score never depends on this module. Administrators ask it for
a suggestion while reviewing a submission and may apply the suggestion
through a manual score override.
"""

import logging
import re
from typing import Optional, Protocol

import httpx

from cbt import config
from cbt.errors import GraderError

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"-?\d+")


class EssayGrader(Protocol):
    async def suggest_score(
        self, question_text: str, answer_text: str, rubric: Optional[str] = None
    ) -> int: ...


def build_prompt(question_text: str, answer_text: str, rubric: Optional[str] = None) -> str:
    lines = [
        "You are grading a student's essay answer for a school exam.",
        f"Question: {question_text}",
    ]
    if rubric:
        lines.append(f"Rubric: {rubric}")
    lines.append(f"Student answer: {answer_text}")
    lines.append("Reply with a single integer score from 0 to 100 and nothing else.")
    return "\n".join(lines)


def parse_score(text: str) -> int:
    """Pull the first integer out of the model reply and check its range."""
    match = _NUMBER_RE.search(text or "")
    if not match:
        raise GraderError(f"Grader reply has no score: {text!r}")
    value = int(match.group())
    if not 0 <= value <= 100:
        raise GraderError(f"Grader score {value} out of range [0, 100]")
    return value


class GeminiEssayGrader:
    """Calls a ``generateContent``-style HTTP endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = config.AI_GRADER_API_KEY,
        url: str = config.AI_GRADER_URL,
        timeout: float = config.AI_GRADER_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.url = url
        self.timeout = timeout
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def suggest_score(
        self, question_text: str, answer_text: str, rubric: Optional[str] = None
    ) -> int:
        if not self.enabled:
            raise GraderError("AI grader is not configured")
        if not answer_text or not answer_text.strip():
            return 0

        payload = {
            "contents": [{"parts": [{"text": build_prompt(question_text, answer_text, rubric)}]}]
        }
        try:
            if self._client is not None:
                response = await self._client.post(
                    self.url, params={"key": self.api_key}, json=payload, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(
                        self.url, params={"key": self.api_key}, json=payload, timeout=self.timeout
                    )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("AI grader request failed: %s", exc)
            raise GraderError(f"AI grader request failed: {exc}") from exc

        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise GraderError("AI grader returned an unexpected response") from exc

        score = parse_score(text)
        logger.info("AI grader suggested %d", score)
        return score
