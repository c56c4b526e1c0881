"""
Storage statistics.

Counts the image blobs stored directly under the storage root and how many of
them were created today, and renders the result as an HTML page.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Optional

import jinja2
from fastapi import APIRouter, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates

from .errors import TemplateRenderError
from .models import ErrorResponse, StatsResponse

logger = logging.getLogger("avatar_host.stats")

router = APIRouter(tags=["stats"])

IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp", "bmp"})

TEMPLATES_DIR = Path(__file__).parent / "templates"
STATS_TEMPLATE = "stats.html"


@dataclass(frozen=True)
class StatsSnapshot:
    total_images: int
    today_new_images: int
    current_date: str

    def to_dict(self) -> dict:
        return asdict(self)


def is_image_file(name: str) -> bool:
    """Check if a filename has a recognized image extension (case-insensitive)."""
    if "." not in name:
        return False
    return name.rsplit(".", 1)[1].lower() in IMAGE_EXTENSIONS


def created_on(st: os.stat_result) -> date:
    """
    Local calendar date a file was created.

    Uses st_birthtime where the platform reports it. Otherwise falls back to
    st_mtime, which for a blob is the moment its upload finished.
    """
    ts = getattr(st, "st_birthtime", None)
    if ts is None:
        ts = st.st_mtime
    return datetime.fromtimestamp(ts).date()


def compute_stats(root: Path | str, today: Optional[date] = None) -> StatsSnapshot:
    """
    Scan the storage root (non-recursive) and count image blobs.

    A root that cannot be opened counts as empty. Files whose metadata cannot
    be read still count toward the total but never toward today's count.
    """
    today = today or date.today()
    total = 0
    new_today = 0

    try:
        with os.scandir(root) as it:
            entries = list(it)
    except OSError as e:
        logger.warning("Cannot scan storage root %s: %s", root, e)
        entries = []

    for entry in entries:
        try:
            if not entry.is_file():
                continue
        except OSError:
            continue
        if not is_image_file(entry.name):
            continue

        total += 1
        try:
            st = entry.stat()
        except OSError as e:
            logger.debug("No metadata for %s: %s", entry.name, e)
            continue
        if created_on(st) == today:
            new_today += 1

    return StatsSnapshot(
        total_images=total,
        today_new_images=new_today,
        current_date=today.strftime("%Y-%m-%d"),
    )


def build_templates(directory: Path = TEMPLATES_DIR) -> Jinja2Templates:
    # StrictUndefined makes a template referencing missing data fail loudly.
    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(str(directory)),
        autoescape=jinja2.select_autoescape(["html"]),
        undefined=jinja2.StrictUndefined,
    )
    return Jinja2Templates(env=env)


def render_stats(templates: Jinja2Templates, request: Request, snapshot: StatsSnapshot):
    """
    Raises:
        TemplateRenderError: the template is missing or fails to render
    """
    try:
        return templates.TemplateResponse(request, STATS_TEMPLATE, snapshot.to_dict())
    except jinja2.TemplateError as e:
        logger.error("Stats template failed: %s", e)
        raise TemplateRenderError(f"Template error: {e}") from e


@router.get(
    "/stats",
    response_class=HTMLResponse,
    responses={
        200: {"model": StatsResponse, "description": "HTML page, or JSON with ?format=json"},
        500: {"model": ErrorResponse},
    },
    summary="Storage statistics",
    description="Total stored images and how many were uploaded today. No authentication required.",
)
def get_stats(
    request: Request,
    output_format: str = Query(default="html", alias="format", pattern="^(html|json)$"),
):
    snapshot = compute_stats(request.app.state.settings.upload_root)
    if output_format == "json":
        return JSONResponse(StatsResponse(**snapshot.to_dict()).model_dump())
    return render_stats(request.app.state.templates, request, snapshot)
