"""
API request and response models for the VPlan REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
vplan/models.py, which own the internal domain representation. Route handlers
map between the two.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from vplan.models import News, VPlan, VPlanEntry

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class AuthRequest(BaseModel):
    """Request body for POST /api/authenticate/{username}.

    session selects the login mode:
      0   -- issue a bearer token (response carries token + expire)
      1   -- cookie session with the default max-age
      >1  -- cookie session with the "remember me" max-age
    """

    password: str = Field(default="", max_length=255)
    group: str = Field(default="", max_length=100)
    session: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AuthResponseModel(BaseModel):
    """Successful login. ctx is provider-specific and passed through unchanged."""

    model_config = ConfigDict(frozen=True)

    ident: str
    ctx: Optional[dict[str, Any]] = None


class AuthTokenResponse(AuthResponseModel):
    """Successful token login (session = 0)."""

    token: str
    expire: datetime


class VPlanEntryModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    vplan_id: int
    class_: str = Field(serialization_alias="class")
    time: str
    measures: str
    responsible: str

    @classmethod
    def from_entry(cls, entry: VPlanEntry) -> "VPlanEntryModel":
        return cls(
            id=entry.id,
            vplan_id=entry.vplan_id,
            class_=entry.class_name,
            time=entry.time,
            measures=entry.measures,
            responsible=entry.responsible,
        )


class VPlanModel(BaseModel):
    """One timetable day with its (optionally class-filtered) entries."""

    model_config = ConfigDict(frozen=True)

    id: int
    date_edit: datetime
    date_for: datetime
    block: str
    header: str
    footer: str
    entries: list[VPlanEntryModel] = Field(default_factory=list)

    @classmethod
    def from_vplan(cls, vplan: VPlan) -> "VPlanModel":
        """Factory Method -- the domain-to-transport mapping lives with the output model."""
        return cls(
            id=vplan.id,
            date_edit=vplan.date_edit,
            date_for=vplan.date_for,
            block=vplan.block,
            header=vplan.header,
            footer=vplan.footer,
            entries=[VPlanEntryModel.from_entry(e) for e in vplan.entries],
        )


class VPlanListResponse(BaseModel):
    """Response body for GET /api/vplan."""

    model_config = ConfigDict(frozen=True)

    data: list[VPlanModel]


class NewsModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    date: datetime
    headline: str
    short: str
    story: str

    @classmethod
    def from_news(cls, news: News) -> "NewsModel":
        return cls(id=news.id, date=news.date, headline=news.headline, short=news.short, story=news.story)


class NewsListResponse(BaseModel):
    """Response body for GET /api/news."""

    model_config = ConfigDict(frozen=True)

    data: list[NewsModel]


class ErrorDetail(BaseModel):
    """Machine-readable error payload. code is the HTTP status as an int."""

    model_config = ConfigDict(frozen=True)

    code: int
    message: str = ""


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on every 4xx/5xx response."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
