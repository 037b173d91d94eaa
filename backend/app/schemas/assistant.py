"""Schemas for the AI career assistant endpoints."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class AskRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=2000)
    history: list[ChatTurn] = Field(default_factory=list, max_length=20)


class SearchResultRead(BaseModel):
    title: str
    link: str
    snippet: str
    source: str


class AskResponse(BaseModel):
    reply: str
    sources: list[SearchResultRead] = Field(default_factory=list)


class CareerPathRead(BaseModel):
    id: int
    name: str
    category: str
    avg_salary: str
    competition: str
    competition_score: int
    growth: str
    skills: list[str]
    duration: str
    roi: int
    demand_trend: str
    job_openings: str
    description: str
    top_roles: list[str]
    certifications: list[str]


class SuggestRequest(BaseModel):
    interests: list[str] = Field(..., min_length=1, max_length=10)


class PathSuggestionRead(BaseModel):
    name: str
    category: str
    reason: str
    skills: list[str]
