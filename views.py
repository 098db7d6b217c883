"""
Screen controllers built on the synchronizer.

HireViewEditor is the admin editor (every row, active or not); HireView is the
public hire page (active rows only) with the contact form and resume link.
VisitorSession records analytics for one anonymous visitor.
"""

import logging
import uuid
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import EmailStr, TypeAdapter, ValidationError

from notifications import Notifier
from realtime import ChangeHub
from resume_pdf import ResumeFile, ResumeGenerationError, generate_resume_pdf
from schemas import (
    ANALYTICS,
    CONTACT_FIELDS,
    CONTACT_SUBMISSIONS,
    EXPERIENCE,
    SECTIONS,
    SKILLS,
    AnalyticsEvent,
    ContactSubmission,
)
from store import ContentStore
from synchronizer import Synchronizer, describe_validation

logger = logging.getLogger(__name__)

_email = TypeAdapter(EmailStr)


def field_key(label: str) -> str:
    """'Email Address' -> 'email_address'"""
    return "_".join(label.lower().split())


def validate_contact_values(fields: List[Dict[str, Any]], values: Dict[str, Any]) -> List[str]:
    """Check submitted values (keyed by contact field id) against the field definitions."""
    problems = []
    for field in fields:
        value = values.get(field["id"])
        blank = value is None or value is False or (isinstance(value, str) and not value.strip())
        if blank:
            if field.get("is_required"):
                problems.append(f"{field['label']} is required")
            continue
        if field["field_type"] == "email":
            try:
                _email.validate_python(str(value).strip())
            except ValidationError:
                problems.append(f"{field['label']} must be a valid email address")
        elif field["field_type"] == "select" and field.get("options") and value not in field["options"]:
            problems.append(f"{field['label']} has an unknown option")
    return problems


def build_submission(fields: List[Dict[str, Any]], values: Dict[str, Any], user_flow: str = "employer") -> Dict[str, Any]:
    """Map form values onto a contact submission by field label."""
    by_key = {field_key(f["label"]): values.get(f["id"]) for f in fields}
    return {
        "name": by_key.get("full_name") or by_key.get("name") or "Unknown",
        "email": str(by_key.get("email_address") or by_key.get("email") or "").strip(),
        "subject": by_key.get("subject") or "Hire Inquiry",
        "message": by_key.get("message") or "No message provided",
        "user_flow": user_flow,
    }


class HireViewEditor(Synchronizer):
    def __init__(self, store: ContentStore, hub: ChangeHub, notifier: Optional[Notifier] = None, **kwargs):
        kwargs.setdefault("reconcile_delay", 0.2)
        super().__init__(store, hub, notifier, role="admin", active_only=False, **kwargs)

    @property
    def sections(self):
        return self.rows(SECTIONS)

    @property
    def skills(self):
        return self.rows(SKILLS)

    @property
    def experiences(self):
        return self.rows(EXPERIENCE)

    @property
    def contact_fields(self):
        return self.rows(CONTACT_FIELDS)

    async def update_section_field(self, section_id: str, field: str, value: Any):
        return await self.update(SECTIONS, section_id, {field: value})

    async def update_section_content(self, section_id: str, key: str, value: Any):
        section = self.find(SECTIONS, section_id)
        if section is None:
            return None
        content = {**section.get("content", {}), key: value}
        return await self.update(SECTIONS, section_id, {"content": content})

    async def add_skill(self, **overrides):
        row = {
            "name": "New Skill",
            "category": "Frontend",
            "proficiency": 80,
            "color": "#8b5cf6",
            "order_index": len(self.skills),
            "is_active": True,
        }
        row.update(overrides)
        return await self.create(SKILLS, row)

    async def add_experience(self, **overrides):
        row = {
            "company": "New Company",
            "position": "New Position",
            "description": "Description of role and responsibilities",
            "start_date": date.today().isoformat(),
            "end_date": None,
            "is_current": True,
            "location": "Remote",
            "achievements": [],
            "order_index": len(self.experiences),
            "is_active": True,
        }
        row.update(overrides)
        return await self.create(EXPERIENCE, row)

    async def add_contact_field(self, **overrides):
        row = {
            "field_type": "text",
            "label": "New Field",
            "placeholder": "Enter value",
            "is_required": False,
            "order_index": len(self.contact_fields),
            "is_active": True,
        }
        row.update(overrides)
        return await self.create(CONTACT_FIELDS, row)


class VisitorSession:
    """One anonymous visitor; analytics writes are best effort."""

    def __init__(self, store: ContentStore, user_agent: Optional[str] = None, referrer: Optional[str] = None):
        self.store = store
        self.session_id = f"session_{uuid.uuid4().hex}"
        self.user_agent = user_agent
        self.referrer = referrer
        self.view_mode = "landing"

    async def track(self, flow: str, page_path: str = "/") -> bool:
        try:
            event = AnalyticsEvent(
                session_id=self.session_id,
                user_flow=flow,
                page_path=page_path,
                user_agent=self.user_agent,
                referrer=self.referrer,
            )
            await self.store.insert(ANALYTICS, event.model_dump())
        except Exception:
            logger.exception("Analytics tracking error")
            return False
        return True

    async def select_flow(self, flow: str) -> str:
        await self.track(flow, f"/{flow}-flow")
        self.view_mode = "hire" if flow == "employer" else "portfolio"
        return self.view_mode


class HireView(Synchronizer):
    def __init__(self, store: ContentStore, hub: ChangeHub, notifier: Optional[Notifier] = None, **kwargs):
        kwargs.setdefault("reconcile_delay", 0.1)
        super().__init__(store, hub, notifier, role="hire", active_only=True, **kwargs)
        self.submitted = False

    @property
    def sections(self):
        return self.rows(SECTIONS)

    @property
    def skills(self):
        return self.rows(SKILLS)

    @property
    def experiences(self):
        return self.rows(EXPERIENCE)

    @property
    def contact_fields(self):
        return self.rows(CONTACT_FIELDS)

    async def submit_contact(self, values: Dict[str, Any]) -> bool:
        problems = validate_contact_values(self.contact_fields, values)
        if problems:
            self.notifier.error("Please check the form", "; ".join(problems))
            return False
        try:
            submission = ContactSubmission.model_validate(build_submission(self.contact_fields, values))
        except ValidationError as exc:
            self.notifier.error("Please check the form", describe_validation(exc))
            return False

        try:
            await self.store.insert(CONTACT_SUBMISSIONS, submission.model_dump())
        except Exception:
            logger.exception("Error submitting contact form")
            self.notifier.error("Error sending message", "Please try again or contact me directly.")
            return False

        self.submitted = True
        self.notifier.success("Message sent successfully!", "I'll get back to you within 24 hours.")
        return True

    def resume_link(self) -> Optional[str]:
        section = next((s for s in self.sections if s["section_type"] == "resume"), None)
        url = (section or {}).get("content", {}).get("file_url")
        if not url:
            self.notifier.success("Resume Download", "Resume file is being prepared. Please try again shortly.")
            return None
        return url

    async def download_resume(self) -> Optional[ResumeFile]:
        try:
            return await generate_resume_pdf(self.store)
        except ResumeGenerationError as exc:
            self.notifier.error("Resume generation failed", str(exc))
            return None
