"""Career assistant backed by web search and an OpenAI-compatible completion API."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Sequence
from urllib.parse import urlparse

import httpx

from app.monitoring.metrics import assistant_requests_total


logger = logging.getLogger(__name__)

FALLBACK_REPLY = "I'm having trouble connecting to my knowledge base right now. Please try again."
SEARCH_SUFFIX = " education college course details reviews"

COUNSELOR_PROMPT = (
    "You are a helpful education and career counselor. Answer the user's question "
    "detailedly using the provided search context. Cite sources where possible."
)
SUGGESTION_PROMPT = (
    "You are a career advisor. Reply only with a JSON array of objects with the keys "
    '"name", "category", "reason" and "skills" (a list of strings).'
)


class AssistantUnavailableError(RuntimeError):
    """Raised when the completion API is not configured or fails."""


@dataclass(frozen=True, slots=True)
class SearchResult:
    title: str
    link: str
    snippet: str
    source: str


@dataclass(frozen=True, slots=True)
class PathSuggestion:
    name: str
    category: str
    reason: str
    skills: tuple[str, ...]


class SearchClient:
    """Google Custom Search wrapper; every failure degrades to no results."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str | None,
        engine_id: str | None,
        url: str = "https://www.googleapis.com/customsearch/v1",
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._engine_id = engine_id
        self._url = url

    async def search(self, keyword: str) -> list[SearchResult]:
        if not self._api_key or not self._engine_id:
            logger.warning("Search API credentials are missing")
            assistant_requests_total.labels("search", "unconfigured").inc()
            return []
        try:
            response = await self._client.get(
                self._url,
                params={"key": self._api_key, "cx": self._engine_id, "q": keyword + SEARCH_SUFFIX},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Search request failed: %s", exc)
            assistant_requests_total.labels("search", "error").inc()
            return []
        assistant_requests_total.labels("search", "ok").inc()
        results = []
        for item in data.get("items") or []:
            link = str(item.get("link", ""))
            results.append(
                SearchResult(
                    title=str(item.get("title", "")),
                    link=link,
                    snippet=str(item.get("snippet", "")),
                    source=item.get("displayLink") or urlparse(link).hostname or "",
                )
            )
        return results


class CompletionClient:
    """Chat-completions client for an OpenAI-compatible endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str | None,
        url: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._url = url
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def complete(
        self,
        system_prompt: str,
        user_content: str,
        context: Sequence[dict[str, str]] = (),
    ) -> str:
        if not self._api_key:
            assistant_requests_total.labels("completion", "unconfigured").inc()
            raise AssistantUnavailableError("Completion API key is missing")
        messages = [{"role": "system", "content": system_prompt}, *context, {"role": "user", "content": user_content}]
        try:
            response = await self._client.post(
                self._url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={
                    "model": self._model,
                    "messages": messages,
                    "temperature": self._temperature,
                    "max_tokens": self._max_tokens,
                },
            )
            response.raise_for_status()
            content = response.json()["choices"][0]["message"]["content"]
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as exc:
            assistant_requests_total.labels("completion", "error").inc()
            raise AssistantUnavailableError("Completion request failed") from exc
        assistant_requests_total.labels("completion", "ok").inc()
        return str(content)


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    if "```json" in cleaned:
        cleaned = cleaned.split("```json", 1)[1].split("```", 1)[0]
    elif "```" in cleaned:
        cleaned = cleaned.split("```", 1)[1].split("```", 1)[0]
    return cleaned.strip()


def parse_structured_completion(text: str) -> Any | None:
    """Decode JSON from a completion, tolerating code fences; malformed output yields ``None``."""

    try:
        return json.loads(strip_code_fences(text))
    except json.JSONDecodeError:
        logger.info("Dropped malformed structured completion")
        return None


def _suggestions_from(payload: Any) -> list[PathSuggestion]:
    if isinstance(payload, dict):
        payload = payload.get("paths") or payload.get("suggestions")
    if not isinstance(payload, list):
        return []
    suggestions = []
    for entry in payload:
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
            continue
        skills = entry.get("skills") or []
        suggestions.append(
            PathSuggestion(
                name=entry["name"].strip(),
                category=str(entry.get("category") or "General"),
                reason=str(entry.get("reason") or ""),
                skills=tuple(str(skill) for skill in skills if isinstance(skill, (str, int))),
            )
        )
    return suggestions


def build_context(results: Iterable[SearchResult]) -> str:
    return "\n\n".join(
        f"Title: {result.title}\nSource: {result.source}\nSnippet: {result.snippet}" for result in results
    )


class CareerAssistant:
    """Answers career questions; external failures never reach the caller."""

    def __init__(self, search: SearchClient, completion: CompletionClient) -> None:
        self._search = search
        self._completion = completion

    async def ask(self, question: str, history: Sequence[dict[str, str]] = ()) -> tuple[str, list[SearchResult]]:
        results = await self._search.search(question)
        prompt = f"Question: {question}\n\nSearch Context:\n{build_context(results)}"
        context = [
            {"role": item["role"], "content": item["content"]}
            for item in history
            if item.get("role") in ("user", "assistant") and item.get("content")
        ]
        try:
            reply = await self._completion.complete(COUNSELOR_PROMPT, prompt, context)
        except AssistantUnavailableError:
            logger.warning("Assistant reply unavailable", exc_info=logger.isEnabledFor(logging.DEBUG))
            return FALLBACK_REPLY, results
        return reply, results

    async def suggest_paths(self, interests: Sequence[str]) -> list[PathSuggestion]:
        wanted = ", ".join(item.strip() for item in interests if item.strip())
        if not wanted:
            return []
        try:
            raw = await self._completion.complete(
                SUGGESTION_PROMPT, f"Suggest career paths for someone interested in: {wanted}"
            )
        except AssistantUnavailableError:
            logger.warning("Career suggestions unavailable", exc_info=logger.isEnabledFor(logging.DEBUG))
            return []
        return _suggestions_from(parse_structured_completion(raw))
