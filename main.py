import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from fastapi.staticfiles import StaticFiles
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, ValidationError

import config
import database
from assistant import OpenAITextGenerator, PortfolioAssistant, PortfolioSnapshot, SlidingWindowRateLimiter
from dashboard import ANALYTICS_WINDOW, compute_stats
from database import create_document, get_document, get_documents, find_one, update_document, delete_document, upsert_singleton
from resume_pdf import ResumeGenerationError, generate_resume_pdf
from schemas import (
    ANALYTICS,
    COLLECTION_MODELS,
    CONTACT_FIELDS,
    CONTACT_SUBMISSIONS,
    EXPERIENCE,
    HIRE_COLLECTIONS,
    PROFILES,
    PROJECTS,
    RESUME_DATA,
    SECTIONS,
    SITE_SETTINGS,
    SKILLS,
    AnalyticsEvent,
    ContactSubmission,
    Profile,
    ResumeData,
    SiteSettings,
    UserFlow,
    validate_row,
)
from storage import MediaStorage, UploadRejected
from store import ContentStore, StoreError
from synchronizer import describe_validation
from views import build_submission, validate_contact_values

config.configure_logging()

# =====================
# Auth / Security Setup
# =====================

# Use pbkdf2_sha256 to avoid external bcrypt dependency issues
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

ADMIN_EMAIL = config.ADMIN_EMAIL
# Support providing a precomputed hash; otherwise hash the provided password
ADMIN_PASSWORD_HASH = config.ADMIN_PASSWORD_HASH or pwd_context.hash(config.ADMIN_PASSWORD)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    email: str
    password: str


# ============
# Request DTOs
# ============
class ContactForm(BaseModel):
    values: Dict[str, Any]  # keyed by contact field id
    user_flow: UserFlow = "employer"


class AskRequest(BaseModel):
    question: str


# ==================
# FastAPI app config
# ==================
app = FastAPI(title="Portfolio API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Path(config.MEDIA_ROOT).mkdir(parents=True, exist_ok=True)
app.mount(config.MEDIA_URL, StaticFiles(directory=config.MEDIA_ROOT), name="media")

content_store = ContentStore()
media = MediaStorage()
assistant_limiters: Dict[str, SlidingWindowRateLimiter] = {}

ACTIVE = {"is_active": True}

# =========
# Utilities
# =========

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def get_current_admin(authorization: Optional[str] = Header(None)):
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
        email: str = payload.get("sub")
        role: str = payload.get("role")
        if email != ADMIN_EMAIL or role != "admin":
            raise HTTPException(status_code=403, detail="Forbidden")
        return {"email": email, "role": role}
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")


def require_db():
    if not database.available():
        raise HTTPException(status_code=500, detail="Database not available")


def editable_collection(collection: str) -> str:
    if collection not in COLLECTION_MODELS:
        raise HTTPException(status_code=404, detail=f"Unknown collection {collection}")
    return collection


def active_rows(collection: str):
    return get_documents(collection, ACTIVE, sort=database.ORDERED) if database.available() else []


# ======
# Routes
# ======
@app.get("/")
def root():
    return {"status": "ok", "service": "portfolio-api"}


@app.get("/test")
def test_database():
    ok = database.available()
    collections = []
    if ok:
        try:
            collections = database.db.list_collection_names()
        except Exception:
            pass
    return {"backend": "running", "database": "connected" if ok else "not-available", "collections": collections[:10]}


# Auth
@app.post("/api/auth/login", response_model=Token)
def login(data: LoginRequest):
    if data.email.lower() != ADMIN_EMAIL.lower() or not verify_password(data.password, ADMIN_PASSWORD_HASH):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = create_access_token({"sub": ADMIN_EMAIL, "role": "admin"})
    return Token(access_token=token)


# Public content
@app.get("/api/hire")
def get_hire_view():
    return {
        "sections": active_rows(SECTIONS),
        "skills": active_rows(SKILLS),
        "experience": active_rows(EXPERIENCE),
        "contact_fields": active_rows(CONTACT_FIELDS),
    }


@app.get("/api/projects")
def list_projects():
    return active_rows(PROJECTS)


@app.get("/api/profile")
def get_profile():
    require_db()
    return find_one(PROFILES) or Profile().model_dump()


@app.get("/api/settings")
def get_settings():
    require_db()
    row = find_one(SITE_SETTINGS)
    if not row:
        return SiteSettings().model_dump()
    return SiteSettings.model_validate({k: v for k, v in row.items() if k in SiteSettings.model_fields}).model_dump()


@app.put("/api/settings")
def update_settings(settings: SiteSettings, _: dict = Depends(get_current_admin)):
    require_db()
    return upsert_singleton(SITE_SETTINGS, settings)


# Visitors
@app.post("/api/contact", status_code=201)
def submit_contact(form: ContactForm):
    require_db()
    fields = active_rows(CONTACT_FIELDS)
    problems = validate_contact_values(fields, form.values)
    if problems:
        raise HTTPException(status_code=422, detail=problems)
    try:
        submission = ContactSubmission.model_validate(build_submission(fields, form.values, form.user_flow))
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=describe_validation(exc))
    row = create_document(CONTACT_SUBMISSIONS, submission)
    return {"id": row["id"]}


@app.post("/api/analytics", status_code=201)
def track_visit(event: AnalyticsEvent):
    require_db()
    row = create_document(ANALYTICS, event)
    return {"id": row["id"]}


@app.get("/api/resume.pdf")
async def download_resume():
    require_db()
    try:
        resume = await generate_resume_pdf(content_store)
    except ResumeGenerationError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return Response(
        content=resume.content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{resume.filename}"'},
    )


def limiter_for(client: str) -> SlidingWindowRateLimiter:
    """Per-client limiter; limiters with nothing left in their window are dropped."""
    for key in [k for k, lim in assistant_limiters.items() if lim.idle()]:
        del assistant_limiters[key]
    return assistant_limiters.setdefault(client, SlidingWindowRateLimiter())


def text_generator():
    if not config.OPENAI_API_KEY:
        return None
    return OpenAITextGenerator()


@app.post("/api/assistant")
async def ask_assistant(body: AskRequest, request: Request):
    require_db()
    client = request.client.host if request.client else "anonymous"
    limiter = limiter_for(client)
    try:
        profile, skills, sections, resume = await asyncio.gather(
            content_store.single(PROFILES),
            content_store.select(SKILLS, filters=ACTIVE, order_by="order_index"),
            content_store.select(SECTIONS, filters=ACTIVE, order_by="order_index"),
            content_store.single(RESUME_DATA),
        )
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    snapshot = PortfolioSnapshot.from_rows(profile, skills, sections, resume)
    reply = await PortfolioAssistant(text_generator(), snapshot, limiter).ask(body.question)
    if reply.source == "rate_limited":
        raise HTTPException(status_code=429, detail=reply.text)
    return {"answer": reply.text, "source": reply.source}


@app.websocket("/ws/changes/{collection}")
async def change_feed(websocket: WebSocket, collection: str):
    if collection not in HIRE_COLLECTIONS + (PROJECTS,):
        await websocket.close(code=4404)
        return

    async def forward(event):
        await websocket.send_json(jsonable_encoder(event.to_dict()))

    await websocket.accept()
    # same loop as the handshake, so no event can arrive in between
    channel = database.changes.channel(f"ws_{id(websocket)}_{collection}", collection, forward)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        channel.close()


# Admin: profile, resume data (declared before the generic collection routes)
@app.put("/api/admin/profile")
def update_profile(profile: Profile, _: dict = Depends(get_current_admin)):
    require_db()
    return upsert_singleton(PROFILES, profile)


@app.post("/api/admin/profile/avatar")
async def upload_avatar(file: UploadFile = File(...), _: dict = Depends(get_current_admin)):
    require_db()
    data = await file.read()
    try:
        url = media.save(data, file.content_type)
    except UploadRejected as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    current = find_one(PROFILES) or Profile().model_dump()
    current["avatar_url"] = url
    return upsert_singleton(PROFILES, Profile.model_validate(current))


@app.get("/api/admin/resume-data")
def get_resume_data(_: dict = Depends(get_current_admin)):
    require_db()
    return find_one(RESUME_DATA) or ResumeData().model_dump()


@app.put("/api/admin/resume-data")
def update_resume_data(resume: ResumeData, _: dict = Depends(get_current_admin)):
    require_db()
    return upsert_singleton(RESUME_DATA, resume)


# Admin: messages and analytics
@app.get("/api/admin/contacts")
def list_contacts(_: dict = Depends(get_current_admin)):
    require_db()
    return get_documents(CONTACT_SUBMISSIONS, sort=[("created_at", -1)])


@app.post("/api/admin/contacts/{submission_id}/read")
def mark_contact_read(submission_id: str, _: dict = Depends(get_current_admin)):
    require_db()
    row = update_document(CONTACT_SUBMISSIONS, submission_id, {"status": "read"})
    if not row:
        raise HTTPException(status_code=404, detail="Not found")
    return row


@app.get("/api/admin/stats")
def get_stats(_: dict = Depends(get_current_admin)):
    require_db()
    analytics = get_documents(ANALYTICS, sort=[("created_at", -1)], limit=ANALYTICS_WINDOW)
    contacts = get_documents(CONTACT_SUBMISSIONS)
    return compute_stats(analytics, contacts)


# Admin: hire view content and projects
@app.get("/api/admin/{collection}")
def admin_list(collection: str, _: dict = Depends(get_current_admin)):
    require_db()
    return get_documents(editable_collection(collection), sort=database.ORDERED)


@app.post("/api/admin/{collection}", status_code=201)
def admin_create(collection: str, body: Dict[str, Any], _: dict = Depends(get_current_admin)):
    require_db()
    try:
        clean = validate_row(editable_collection(collection), body)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=describe_validation(exc))
    return create_document(collection, clean)


@app.patch("/api/admin/{collection}/{row_id}")
def admin_update(collection: str, row_id: str, patch: Dict[str, Any], _: dict = Depends(get_current_admin)):
    require_db()
    current = get_document(editable_collection(collection), row_id)
    if not current:
        raise HTTPException(status_code=404, detail="Not found")
    try:
        clean = validate_row(collection, {**current, **patch})
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=describe_validation(exc))
    changed = {k: v for k, v in clean.items() if k in patch or current.get(k) != v}
    row = update_document(collection, row_id, changed)
    if not row:
        raise HTTPException(status_code=404, detail="Not found")
    return row


@app.delete("/api/admin/{collection}/{row_id}")
def admin_delete(collection: str, row_id: str, _: dict = Depends(get_current_admin)):
    require_db()
    if not delete_document(editable_collection(collection), row_id):
        raise HTTPException(status_code=404, detail="Not found")
    return {"deleted": 1}
