"""
api/routes/vplan.py -- Timetable and news endpoints.

Routes:
  GET /api/vplan?class=&time=  -- plans for dates >= time (RFC3339, default now)
  GET /api/news?limit=         -- newest news items

Both require authentication (session cookie or bearer token) and are rate
limited in their own buckets ("getVPlan", "getNews").

Conditional fetch: responses carry a strong ETag computed from the JSON body.
The frontend polls with If-None-Match and gets 304 with no body while nothing
changed.
"""

import hashlib
import json
import re
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, Response

from api.limiter import rate_bucket
from api.models import NewsListResponse, NewsModel, VPlanListResponse, VPlanModel
from auth.dependencies import get_current_ident
from core.database import utcnow
from core.errors import BadRequest
from vplan.store import VPlanStore

# Auth policy:
# - GET /api/vplan: requires auth
# - GET /api/news:  requires auth
router = APIRouter()


_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(?:(Z)|([+-])(\d{2}):(\d{2}))",
    re.ASCII,
)


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC3339 timestamp such as 2024-01-01T08:00:00Z or 2024-01-01T08:00:00.5+02:00.

    Only the RFC3339 profile is accepted: separators are mandatory and an
    offset (Z or +hh:mm) is required. Raises ValueError otherwise.
    """
    match = _RFC3339.fullmatch(value)
    if match is None:
        raise ValueError(f"not an RFC3339 timestamp: {value!r}")
    year, month, day, hour, minute, second, frac, zulu, sign, off_h, off_m = match.groups()
    if zulu:
        tz = timezone.utc
    else:
        if int(off_m) > 59:
            raise ValueError(f"offset minutes out of range: {value!r}")
        offset = timedelta(hours=int(off_h), minutes=int(off_m))
        tz = timezone(-offset if sign == "-" else offset)
    micros = int((frac or "0")[:6].ljust(6, "0"))
    return datetime(int(year), int(month), int(day), int(hour), int(minute), int(second), micros, tzinfo=tz)


def _etag_for(body: dict) -> str:
    raw = json.dumps(body, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return '"' + hashlib.sha256(raw).hexdigest()[:32] + '"'


def _etag_matches(request: Request, etag: str) -> bool:
    header = request.headers.get("If-None-Match", "")
    if not header:
        return False
    candidates = [c.strip().removeprefix("W/") for c in header.split(",")]
    return etag in candidates or "*" in candidates


def conditional_json(request: Request, body: dict) -> Response:
    """Return body as JSON with an ETag, or 304 if the client already has it."""
    etag = _etag_for(body)
    headers = {"ETag": etag, "Cache-Control": "no-cache"}
    if _etag_matches(request, etag):
        return Response(status_code=304, headers=headers)
    return JSONResponse(content=body, headers=headers)


@router.get("/vplan", dependencies=[rate_bucket("getVPlan", "rate_limit_vplan")])
def get_vplan(
    request: Request,
    class_name: str = Query(default="", alias="class", max_length=32),
    time_param: str = Query(default="", alias="time"),
    ident: str = Depends(get_current_ident),
) -> Response:
    """Return every plan dated at or after `time`, entries filtered by `class`."""
    if time_param:
        try:
            since = parse_rfc3339(time_param)
        except ValueError:
            raise BadRequest("time format is not RFC3339") from None
    else:
        since = utcnow()

    store: VPlanStore = request.app.state.vplan_store
    vplans = store.get_vplans(class_name, since)
    body = VPlanListResponse(data=[VPlanModel.from_vplan(v) for v in vplans]).model_dump(mode="json", by_alias=True)
    return conditional_json(request, body)


@router.get("/news", dependencies=[rate_bucket("getNews", "rate_limit_news")])
def get_news(
    request: Request,
    limit: int = Query(default=10, ge=1, le=50),
    ident: str = Depends(get_current_ident),
) -> Response:
    """Return the newest news items, newest first."""
    store: VPlanStore = request.app.state.vplan_store
    news = store.get_news(limit=limit)
    body = NewsListResponse(data=[NewsModel.from_news(n) for n in news]).model_dump(mode="json")
    return conditional_json(request, body)
