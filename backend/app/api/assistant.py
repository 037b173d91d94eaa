"""Career assistant and career path catalog endpoints."""

from typing import Any, List, Literal

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_assistant, get_current_profile
from app.schemas import (
    AskRequest,
    AskResponse,
    CareerPathRead,
    PathSuggestionRead,
    SearchResultRead,
    SuggestRequest,
)
from app.services.assistant import CareerAssistant
from app.services.career_paths import INTERESTS, filter_paths

router = APIRouter()


@router.post("/ask", response_model=AskResponse)
async def ask_assistant(
    payload: AskRequest,
    _: dict[str, Any] = Depends(get_current_profile),
    assistant: CareerAssistant = Depends(get_assistant),
) -> AskResponse:
    """Answer a career question; upstream failures yield a canned reply instead of an error."""

    reply, results = await assistant.ask(
        payload.question, [turn.model_dump() for turn in payload.history]
    )
    return AskResponse(
        reply=reply,
        sources=[
            SearchResultRead(title=r.title, link=r.link, snippet=r.snippet, source=r.source)
            for r in results
        ],
    )


@router.post("/suggestions", response_model=List[PathSuggestionRead])
async def suggest_career_paths(
    payload: SuggestRequest,
    _: dict[str, Any] = Depends(get_current_profile),
    assistant: CareerAssistant = Depends(get_assistant),
) -> list[PathSuggestionRead]:
    suggestions = await assistant.suggest_paths(payload.interests)
    return [
        PathSuggestionRead(name=s.name, category=s.category, reason=s.reason, skills=list(s.skills))
        for s in suggestions
    ]


@router.get("/career-paths", response_model=List[CareerPathRead])
async def list_career_paths(
    interest: str = "all",
    q: str | None = Query(default=None, max_length=100),
    sort_by: Literal["roi", "competition", "salary"] = "roi",
) -> list[dict[str, Any]]:
    """Static catalog of career paths filtered by interest category and search text."""

    return [path.to_dict() for path in filter_paths(interest, q, sort_by)]


@router.get("/career-paths/interests", response_model=List[str])
async def list_interests() -> list[str]:
    return list(INTERESTS)
