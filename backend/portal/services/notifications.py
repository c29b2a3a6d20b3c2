"""
Rendering of the notification emails sent for each form.

Every notification has an HTML and a plain-text body rendered from the
templates in portal/templates. HTML templates are autoescaped, so user
supplied values can be interpolated as-is.
"""

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape
from markupsafe import Markup, escape

from portal.models.submissions import BienestarForm, FormacionForm, PqrsForm

logger = logging.getLogger(__name__)

_PACKAGE_DIR = Path(__file__).resolve().parent.parent
TEMPLATES_PATH = _PACKAGE_DIR / "templates"
COURSES_PATH = _PACKAGE_DIR / "data" / "formacion_courses.json"


@dataclass(frozen=True)
class RenderedEmail:
    text: str
    html: str


@dataclass(frozen=True)
class CourseDefinition:
    title: str
    isCertificate: Optional[bool] = None
    urlCurso: Optional[str] = None


def _nl2br(value: str) -> Markup:
    return Markup("<br />").join(escape(value).split("\n"))


@lru_cache()
def get_environment() -> Environment:
    environment = Environment(
        loader=FileSystemLoader(TEMPLATES_PATH),
        autoescape=select_autoescape(["html", "xml"]),
        keep_trailing_newline=True,
    )
    environment.filters["nl2br"] = _nl2br
    return environment


def _render(template_name: str, context: dict[str, Any]) -> str:
    try:
        template = get_environment().get_template(template_name)
    except TemplateNotFound as exc:
        raise RuntimeError(f"Email template '{template_name}' not found") from exc
    return template.render(**context)


def _render_pair(base_name: str, context: dict[str, Any]) -> RenderedEmail:
    return RenderedEmail(
        text=_render(f"{base_name}.txt", context),
        html=_render(f"{base_name}.html", context),
    )


# ---------------------------------------------------------------------------
# Course catalog
# ---------------------------------------------------------------------------

@lru_cache()
def load_course_catalog(path: Path = COURSES_PATH) -> tuple[CourseDefinition, ...]:
    with path.open(encoding="utf-8") as fh:
        raw = json.load(fh)

    courses = []
    for entry in raw:
        url = (entry.get("urlCurso") or "").strip() or None
        courses.append(
            CourseDefinition(
                title=entry["title"],
                isCertificate=entry.get("isCertificate"),
                urlCurso=url,
            )
        )
    return tuple(courses)


def find_course(title: str) -> Optional[CourseDefinition]:
    """Case-insensitive lookup by course title."""
    wanted = title.strip().lower()
    for course in load_course_catalog():
        if course.title.strip().lower() == wanted:
            return course
    logger.info("Course %r is not in the catalog; confirmation will omit certificate details", title)
    return None


# ---------------------------------------------------------------------------
# Per-form renderers
# ---------------------------------------------------------------------------

def render_pqrs_notification(form: PqrsForm) -> RenderedEmail:
    return _render_pair("pqrs", {"form": form})


def render_formacion_notification(form: FormacionForm) -> RenderedEmail:
    return _render_pair("formacion", {"form": form})


def render_formacion_confirmation(
    form: FormacionForm,
    course: Optional[CourseDefinition] = None,
) -> RenderedEmail:
    """Confirmation for the participant, with the course's certificate notice."""
    return _render_pair("formacion_confirmation", {"form": form, "course": course})


def render_bienestar_notification(form: BienestarForm) -> RenderedEmail:
    return _render_pair("bienestar", {"form": form})
