import io
from datetime import date

import pdfplumber
import pytest

from helpers import seed
from resume_pdf import (
    BOTTOM_MARGIN,
    ResumeGenerationError,
    ResumeLayout,
    generate_resume_pdf,
    render_resume,
    resume_filename,
)
from schemas import EXPERIENCE, PROFILES, PROJECTS, RESUME_DATA, SKILLS, ResumeContent

TODAY = date(2024, 5, 17)
A4_HEIGHT = 297


def pdf_text(content):
    with pdfplumber.open(io.BytesIO(content)) as pdf:
        return "\n".join(page.extract_text() or "" for page in pdf.pages)


def headings(result):
    return [p.text for p in result.placements if p.kind == "heading"]


def test_filename_uses_underscored_name_and_date():
    assert resume_filename("Ada  King Lovelace", TODAY) == "Ada_King_Lovelace_Resume_2024-05-17.pdf"
    assert resume_filename("", TODAY) == "Resume_Resume_2024-05-17.pdf"


def test_empty_sources_render_placeholder_header_only():
    result = render_resume(None, [], [], [], ResumeContent(), TODAY)

    assert result.content.startswith(b"%PDF")
    assert result.pages == 1
    assert headings(result) == []
    text = pdf_text(result.content)
    assert "Jane Doe" in text
    assert "Full-Stack Developer" in text
    assert "jane.doe@example.com" in text


def test_sections_appear_in_order_when_present():
    resume = ResumeContent.model_validate({
        "personal_info": {"full_name": "Ada Lovelace", "summary": "Analyst of engines."},
        "education": [{"degree": "Mathematics", "institution": "Private tutors", "year": "1835"}],
        "certifications": [{"name": "Difference Engine", "issuer": "Babbage", "year": "1843"}],
        "languages": [{"name": "English", "proficiency": "Native"}, {"name": "French"}],
        "interests": "Poetical science",
    })
    skills = [{"name": "Python", "category": "Backend"}, {"name": "SQL", "category": "Database"}]
    experiences = [{
        "position": "Engineer", "company": "Analytical Co", "location": "London",
        "start_date": "2020-01-01", "is_current": True,
        "description": "Wrote the first program.", "achievements": ["Note G", " "],
    }]
    projects = [{"title": "Bernoulli", "description": "Computes numbers.", "tech_stack": ["Engine"]}]

    result = render_resume({"role": "Analyst"}, skills, experiences, projects, resume, TODAY)

    assert headings(result) == [
        "PROFESSIONAL SUMMARY",
        "TECHNICAL SKILLS",
        "PROFESSIONAL EXPERIENCE",
        "KEY PROJECTS",
        "EDUCATION",
        "CERTIFICATIONS",
        "LANGUAGES",
        "INTERESTS",
    ]
    assert result.filename == "Ada_Lovelace_Resume_2024-05-17.pdf"
    text = pdf_text(result.content)
    assert "2020 - Present" in text
    assert "Difference Engine - Babbage (1843)" in text
    assert "English (Native), French" in text


def test_long_resume_breaks_pages_without_orphaned_headings():
    experiences = [
        {
            "position": f"Role {i}",
            "company": "Company",
            "start_date": "2015-01-01",
            "end_date": "2016-01-01",
            "description": "Built and maintained systems. " * 40,
            "achievements": ["Shipped a feature used by many customers"] * 3,
        }
        for i in range(6)
    ]
    projects = [{"title": f"Project {i}", "description": "Useful tool. " * 30} for i in range(2)]
    resume = ResumeContent.model_validate({
        "education": [{"degree": f"Degree {i}", "institution": "University"} for i in range(4)],
        "interests": "Reading",
    })

    result = render_resume({"full_name": "Long Resume"}, [], experiences, projects, resume, TODAY)

    assert result.pages > 1
    for placement in result.placements:
        assert placement.y <= A4_HEIGHT - BOTTOM_MARGIN
    for index, placement in enumerate(result.placements):
        if placement.kind == "heading":
            following = result.placements[index + 1]
            assert following.page == placement.page, placement.text


def test_only_first_three_projects_are_listed():
    projects = [{"title": f"Project {i}"} for i in range(5)]
    result = render_resume(None, [], [], projects, ResumeContent(), TODAY)
    titles = [p.text for p in result.placements if p.text.startswith("Project ")]
    assert titles == ["Project 0", "Project 1", "Project 2"]


def test_unbroken_tokens_are_split_to_the_content_width():
    layout = ResumeLayout()
    layout.font("", 10)
    token = "https://example.com/" + "a" * 300

    lines = layout.wrap(f"See {token} now", layout.content_width)

    assert len(lines) > 2
    assert all(layout.pdf.get_string_width(line) <= layout.content_width for line in lines)
    assert "".join(" ".join(lines).split()) == f"See{token}now"


def test_text_outside_latin1_does_not_break_rendering():
    resume = ResumeContent.model_validate({"personal_info": {"summary": "Builds “tools” – fast… ✓"}})
    result = render_resume(None, [], [], [], resume, TODAY)
    assert 'Builds "tools" - fast... ?' in [p.text for p in result.placements]


async def test_generates_from_active_store_rows(store):
    seed(PROFILES, {"full_name": "Grace Hopper", "role": "Rear Admiral", "bio": "Compilers."})
    seed(SKILLS,
         {"name": "COBOL", "category": "Backend", "order_index": 0, "is_active": True},
         {"name": "Secret", "category": "Backend", "order_index": 1, "is_active": False})
    seed(EXPERIENCE, {"position": "Programmer", "company": "Navy", "start_date": "1944-01-01",
                      "is_current": False, "end_date": "1986-01-01", "order_index": 0, "is_active": True})
    seed(PROJECTS, {"title": "A-0", "order_index": 0, "is_active": True})
    seed(RESUME_DATA, {"content": {"languages": [{"name": "English"}]}})

    result = await generate_resume_pdf(store, today=TODAY)

    assert result.filename == "Grace_Hopper_Resume_2024-05-17.pdf"
    text = pdf_text(result.content)
    assert "Grace Hopper" in text
    assert "COBOL" in text
    assert "Secret" not in text
    assert "1944 - 1986" in text
    assert "LANGUAGES" in text


async def test_malformed_resume_data_falls_back_to_defaults(store):
    seed(RESUME_DATA, {"content": {"education": "not a list"}})
    result = await generate_resume_pdf(store, today=TODAY)
    assert headings(result) == []


async def test_any_failed_fetch_aborts_generation(flaky_store):
    flaky_store.fail_select = {SKILLS}
    with pytest.raises(ResumeGenerationError, match="hire_skills"):
        await generate_resume_pdf(flaky_store, today=TODAY)
