"""
Database Schemas for the Portfolio CMS

Each Pydantic model = one MongoDB collection (see COLLECTIONS for the names).
"""

import re
from datetime import date
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

SECTIONS = "hire_sections"
SKILLS = "hire_skills"
EXPERIENCE = "hire_experience"
CONTACT_FIELDS = "hire_contact_fields"
PROJECTS = "projects"
CONTACT_SUBMISSIONS = "contact_submissions"
ANALYTICS = "visitor_analytics"
PROFILES = "profiles"
RESUME_DATA = "resume_data"
SITE_SETTINGS = "site_settings"

# The four collections behind the hire view, in load order
HIRE_COLLECTIONS = (SECTIONS, SKILLS, EXPERIENCE, CONTACT_FIELDS)

SectionType = Literal["hero", "skills", "experience", "contact", "resume"]
SkillCategory = Literal["Frontend", "Backend", "Database", "Tools", "DevOps", "Cloud", "Other"]
FieldType = Literal["text", "email", "textarea", "select", "checkbox"]
UserFlow = Literal["employer", "viewer"]

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


# Hire view content
class Section(BaseModel):
    section_type: SectionType
    title: str = Field(..., min_length=1, max_length=200)
    content: Dict[str, Any] = Field(default_factory=dict)  # shape depends on section_type
    order_index: int = 0
    is_active: bool = True

    @model_validator(mode="after")
    def check_content(self):
        if self.section_type == "resume":
            url = self.content.get("file_url")
            if url and not str(url).startswith(("http://", "https://", "/")):
                raise ValueError("resume file_url must be an absolute URL or path")
        if self.section_type == "hero":
            for key in ("headline", "subtitle", "description"):
                if key in self.content and not isinstance(self.content[key], str):
                    raise ValueError(f"hero {key} must be text")
        return self


class Skill(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    category: SkillCategory = "Frontend"
    proficiency: int = Field(80, ge=0, le=100)
    color: str = "#8b5cf6"
    order_index: int = 0
    is_active: bool = True

    @field_validator("color")
    @classmethod
    def check_color(cls, v: str) -> str:
        if not _HEX_COLOR.match(v):
            raise ValueError("color must look like #rrggbb")
        return v


class Experience(BaseModel):
    company: str = Field(..., min_length=1, max_length=200)
    position: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    start_date: date
    end_date: Optional[date] = None
    is_current: bool = False
    location: str = ""
    achievements: List[str] = []
    order_index: int = 0
    is_active: bool = True

    @model_validator(mode="after")
    def check_dates(self):
        if self.is_current:
            self.end_date = None
        elif self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date cannot be before start_date")
        return self


class ContactField(BaseModel):
    field_type: FieldType = "text"
    label: str = Field(..., min_length=1, max_length=100)
    placeholder: str = ""
    is_required: bool = False
    options: List[str] = []  # choices for select fields
    order_index: int = 0
    is_active: bool = True


class Project(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    tech_stack: List[str] = []
    demo_url: Optional[str] = None
    repo_url: Optional[str] = None
    image_url: Optional[str] = None
    order_index: int = 0
    is_active: bool = True


# Visitor data
class ContactSubmission(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    subject: str = "Hire Inquiry"
    message: str = Field(..., min_length=1)
    user_flow: UserFlow = "employer"
    status: Literal["unread", "read"] = "unread"


class AnalyticsEvent(BaseModel):
    session_id: str = Field(..., min_length=1)
    user_flow: UserFlow
    page_path: str = "/"
    user_agent: Optional[str] = None
    referrer: Optional[str] = None


# Singletons
class Profile(BaseModel):
    full_name: str = ""
    bio: str = ""
    role: str = ""
    avatar_url: Optional[str] = None


class PersonalInfo(BaseModel):
    full_name: str = ""
    email: str = ""
    phone: str = ""
    location: str = ""
    website: str = ""
    linkedin: str = ""
    github: str = ""
    summary: str = ""


class EducationEntry(BaseModel):
    degree: str
    institution: str
    year: str = ""


class Certification(BaseModel):
    name: str
    issuer: str = ""
    year: str = ""


class LanguageEntry(BaseModel):
    name: str
    proficiency: str = ""


class ResumeContent(BaseModel):
    personal_info: PersonalInfo = Field(default_factory=PersonalInfo)
    education: List[EducationEntry] = []
    certifications: List[Certification] = []
    languages: List[LanguageEntry] = []
    interests: str = ""


class ResumeData(BaseModel):
    content: ResumeContent = Field(default_factory=ResumeContent)


class SiteSettings(BaseModel):
    theme: Literal["dark", "light", "system"] = "dark"
    primary_color: str = "#8b5cf6"
    accent_color: str = "#06b6d4"
    show_chat_widget: bool = True
    maintenance_mode: bool = False
    session_timeout_minutes: int = Field(30, ge=5, le=24 * 60)

    @field_validator("primary_color", "accent_color")
    @classmethod
    def check_color(cls, v: str) -> str:
        if not _HEX_COLOR.match(v):
            raise ValueError("color must look like #rrggbb")
        return v


COLLECTION_MODELS = {
    SECTIONS: Section,
    SKILLS: Skill,
    EXPERIENCE: Experience,
    CONTACT_FIELDS: ContactField,
    PROJECTS: Project,
}

_SERVER_FIELDS = ("id", "created_at", "updated_at")


def validate_row(collection: str, row: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a full row for `collection` and return its storable form.

    Raises pydantic.ValidationError. Server-managed fields are ignored.
    """
    model = COLLECTION_MODELS[collection]
    data = {k: v for k, v in row.items() if k not in _SERVER_FIELDS}
    return model.model_validate(data).model_dump(mode="json")
