"""
PDF resume generation.

Sources are fetched fresh from the store (profile, active skills, experience
and projects, resume data) and laid out top to bottom on A4 pages. Before a
section heading is drawn the layout makes sure the heading and the first line
of its body fit above the bottom margin; otherwise it starts a new page.
Nothing is rendered unless every fetch succeeded.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from fpdf import FPDF
from pydantic import ValidationError

import config
from schemas import EXPERIENCE, PROFILES, PROJECTS, RESUME_DATA, SKILLS, ResumeContent

logger = logging.getLogger(__name__)

MARGIN = 20
TOP = 20
BOTTOM_MARGIN = 20
HEADING_HEIGHT = 8
MAX_PROJECTS = 3

_REPLACEMENTS = {
    "•": "-", "–": "-", "—": "-",
    "‘": "'", "’": "'", "“": '"', "”": '"',
    "…": "...",
}


class ResumeGenerationError(Exception):
    pass


@dataclass
class Placement:
    page: int
    y: float
    kind: str  # "heading", "title" or "body"
    text: str


@dataclass
class ResumeFile:
    filename: str
    content: bytes
    pages: int = 1
    placements: List[Placement] = field(default_factory=list)


def _latin1(text: Any) -> str:
    """Core PDF fonts only cover latin-1."""
    text = str(text or "")
    for src, dst in _REPLACEMENTS.items():
        text = text.replace(src, dst)
    return text.encode("latin-1", "replace").decode("latin-1")


def resume_filename(name: str, today: date) -> str:
    stem = re.sub(r"\s+", "_", (name or "").strip()) or "Resume"
    stem = re.sub(r"[^\w\-]", "", stem) or "Resume"
    return f"{stem}_Resume_{today.isoformat()}.pdf"


class ResumeLayout:
    def __init__(self):
        self.pdf = FPDF(unit="mm", format="A4")
        self.pdf.set_auto_page_break(False)
        self.pdf.add_page()
        self.y = TOP
        self.placements: List[Placement] = []

    @property
    def page_width(self) -> float:
        return self.pdf.w

    @property
    def content_width(self) -> float:
        return self.pdf.w - 2 * MARGIN

    @property
    def limit(self) -> float:
        return self.pdf.h - BOTTOM_MARGIN

    def font(self, style: str = "", size: float = 10) -> None:
        self.pdf.set_font("helvetica", style, size)

    def _pieces(self, word: str, width: float) -> List[str]:
        """Split a word wider than `width` (long URLs, tokens) by character."""
        if self.pdf.get_string_width(word) <= width:
            return [word]
        pieces, chunk = [], ""
        for ch in word:
            if chunk and self.pdf.get_string_width(chunk + ch) > width:
                pieces.append(chunk)
                chunk = ch
            else:
                chunk += ch
        pieces.append(chunk)
        return pieces

    def wrap(self, text: str, width: float) -> List[str]:
        """Greedy word wrap with the current font."""
        lines = []
        for para in _latin1(text).splitlines() or [""]:
            current = ""
            for word in para.split():
                for piece in self._pieces(word, width):
                    candidate = f"{current} {piece}" if current else piece
                    if current and self.pdf.get_string_width(candidate) > width:
                        lines.append(current)
                        current = piece
                    else:
                        current = candidate
            lines.append(current)
        return lines

    def new_page(self) -> None:
        self.pdf.add_page()
        self.y = TOP

    def ensure(self, height: float) -> None:
        if self.y + height > self.limit:
            self.new_page()

    def put(self, x: float, text: str, kind: str = "body", align: str = "left") -> None:
        text = _latin1(text)
        if align == "center":
            x = (self.page_width - self.pdf.get_string_width(text)) / 2
        elif align == "right":
            x = x - self.pdf.get_string_width(text)
        self.pdf.text(x, self.y, text)
        self.placements.append(Placement(self.pdf.page_no(), self.y, kind, text))

    def heading(self, title: str, first_line: float) -> None:
        self.ensure(HEADING_HEIGHT + first_line)
        self.font("B", 14)
        self.put(MARGIN, title, kind="heading")
        self.y += HEADING_HEIGHT

    def lines(self, lines: List[str], line_height: float, x: float = MARGIN) -> None:
        # individual lines may flow onto the next page
        for line in lines:
            self.ensure(line_height)
            self.put(x, line)
            self.y += line_height

    def output(self) -> bytes:
        return bytes(self.pdf.output())


def _year(value: Any) -> str:
    return str(value)[:4] if value else ""


def render_resume(
    profile: Optional[Dict[str, Any]],
    skills: List[Dict[str, Any]],
    experiences: List[Dict[str, Any]],
    projects: List[Dict[str, Any]],
    resume: ResumeContent,
    today: Optional[date] = None,
) -> ResumeFile:
    today = today or date.today()
    profile = profile or {}
    info = resume.personal_info
    placeholders = config.RESUME_PLACEHOLDERS
    layout = ResumeLayout()

    # Header
    name = info.full_name or profile.get("full_name") or placeholders["full_name"]
    layout.font("B", 24)
    layout.put(0, name, kind="title", align="center")
    layout.y += 10
    layout.font("", 14)
    layout.put(0, profile.get("role") or placeholders["role"], kind="title", align="center")
    layout.y += 15
    layout.font("", 10)
    contact = " | ".join([
        info.email or placeholders["email"],
        info.phone or placeholders["phone"],
        info.location or placeholders["location"],
    ])
    layout.put(0, contact, align="center")
    layout.y += 20

    summary = info.summary or profile.get("bio")
    if summary:
        layout.font("", 10)
        wrapped = layout.wrap(summary, layout.content_width)
        layout.heading("PROFESSIONAL SUMMARY", 5)
        layout.font("", 10)
        layout.lines(wrapped, 5)
        layout.y += 10

    if skills:
        by_category: Dict[str, List[str]] = {}
        for skill in skills:
            by_category.setdefault(skill.get("category") or "Other", []).append(skill["name"])
        layout.heading("TECHNICAL SKILLS", 6)
        for category, names in by_category.items():
            layout.font("", 10)
            wrapped = layout.wrap(", ".join(names), layout.page_width - 60 - MARGIN)
            layout.ensure(6)
            layout.font("B", 10)
            layout.put(MARGIN, f"{category}:")
            layout.font("", 10)
            layout.lines(wrapped, 6, x=60)
        layout.y += 10

    if experiences:
        layout.heading("PROFESSIONAL EXPERIENCE", 14)
        for exp in experiences:
            layout.ensure(14)
            layout.font("B", 12)
            layout.put(MARGIN, exp.get("position", ""))
            layout.font("", 12)
            end = "Present" if exp.get("is_current") else _year(exp.get("end_date"))
            dates = f"{_year(exp.get('start_date'))} - {end}" if end else _year(exp.get("start_date"))
            layout.put(layout.page_width - MARGIN, dates, align="right")
            layout.y += 6
            layout.font("I", 10)
            where = " | ".join(p for p in (exp.get("company"), exp.get("location")) if p)
            layout.put(MARGIN, where)
            layout.y += 8
            if exp.get("description"):
                layout.font("", 10)
                layout.lines(layout.wrap(exp["description"], layout.content_width), 4)
                layout.y += 5
            for achievement in exp.get("achievements") or []:
                if achievement.strip():
                    layout.font("", 10)
                    layout.lines(layout.wrap(f"- {achievement}", layout.content_width - 10), 4, x=25)
                    layout.y += 2
            layout.y += 8

    if projects:
        layout.heading("KEY PROJECTS", 10)
        for project in projects[:MAX_PROJECTS]:
            layout.ensure(10)
            layout.font("B", 12)
            layout.put(MARGIN, project.get("title", ""))
            layout.y += 6
            if project.get("description"):
                layout.font("", 10)
                layout.lines(layout.wrap(project["description"], layout.content_width), 4)
                layout.y += 3
            if project.get("tech_stack"):
                layout.font("I", 10)
                layout.lines(layout.wrap("Technologies: " + ", ".join(project["tech_stack"]), layout.content_width), 4)
                layout.y += 4
        layout.y += 4

    if resume.education:
        layout.heading("EDUCATION", 10)
        for edu in resume.education:
            layout.ensure(10)
            layout.font("B", 10)
            layout.put(MARGIN, edu.degree)
            layout.font("", 10)
            if edu.year:
                layout.put(layout.page_width - MARGIN, edu.year, align="right")
            layout.y += 5
            layout.put(MARGIN, edu.institution)
            layout.y += 8

    if resume.certifications:
        layout.heading("CERTIFICATIONS", 5)
        layout.font("", 10)
        for cert in resume.certifications:
            text = cert.name
            if cert.issuer:
                text += f" - {cert.issuer}"
            if cert.year:
                text += f" ({cert.year})"
            layout.lines(layout.wrap(text, layout.content_width), 5)
        layout.y += 8

    if resume.languages:
        layout.font("", 10)
        text = ", ".join(f"{l.name} ({l.proficiency})" if l.proficiency else l.name for l in resume.languages)
        wrapped = layout.wrap(text, layout.content_width)
        layout.heading("LANGUAGES", 5)
        layout.font("", 10)
        layout.lines(wrapped, 5)
        layout.y += 8

    if resume.interests.strip():
        layout.font("", 10)
        wrapped = layout.wrap(resume.interests, layout.content_width)
        layout.heading("INTERESTS", 5)
        layout.font("", 10)
        layout.lines(wrapped, 5)

    filename = resume_filename(info.full_name or profile.get("full_name") or "", today)
    return ResumeFile(
        filename=filename,
        content=layout.output(),
        pages=layout.pdf.page_no(),
        placements=layout.placements,
    )


async def generate_resume_pdf(store, today: Optional[date] = None) -> ResumeFile:
    active = {"is_active": True}
    results = await asyncio.gather(
        store.single(PROFILES),
        store.select(SKILLS, filters=active, order_by="order_index"),
        store.select(EXPERIENCE, filters=active, order_by="order_index"),
        store.select(PROJECTS, filters=active, order_by="order_index"),
        store.single(RESUME_DATA),
        return_exceptions=True,
    )
    errors = [r for r in results if isinstance(r, BaseException)]
    if errors:
        logger.error("Resume sources could not be fetched: %s", errors)
        raise ResumeGenerationError("Could not load resume data: " + ", ".join(str(e) for e in errors))
    profile, skills, experiences, projects, resume_row = results

    try:
        resume = ResumeContent.model_validate((resume_row or {}).get("content") or {})
    except ValidationError as exc:
        logger.warning("Ignoring malformed resume data: %s", exc)
        resume = ResumeContent()

    try:
        result = render_resume(profile, skills, experiences, projects, resume, today)
    except Exception as exc:
        logger.exception("Resume rendering failed")
        raise ResumeGenerationError(f"Could not render resume: {exc}") from exc
    logger.info("Generated %s (%d pages)", result.filename, result.pages)
    return result
