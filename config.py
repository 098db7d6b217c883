"""
Configuration settings for the portfolio API.

Everything is read from the environment (a local .env file is honoured) so the
same code runs in development, tests and production.
"""

from dotenv import load_dotenv
load_dotenv()          # must run before the os.getenv calls below
import logging
import os

# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "super-secret-key-change")
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 12))
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@portfolio.dev")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")
ADMIN_PASSWORD_HASH = os.getenv("ADMIN_PASSWORD_HASH")

# Assistant
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
ASSISTANT_MODEL = os.getenv("ASSISTANT_MODEL", "gpt-4o-mini")
ASSISTANT_MODEL_PARAMS = {
    "temperature": 0.7,
    "max_tokens": 800,
}

# Media uploads
MEDIA_ROOT = os.getenv("MEDIA_ROOT", "media")
MEDIA_URL = os.getenv("MEDIA_URL", "/media")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", 5 * 1024 * 1024))

# Resume placeholders used when the profile or resume data is incomplete
RESUME_PLACEHOLDERS = {
    "full_name": os.getenv("RESUME_PLACEHOLDER_NAME", "Jane Doe"),
    "role": os.getenv("RESUME_PLACEHOLDER_ROLE", "Full-Stack Developer"),
    "email": os.getenv("RESUME_PLACEHOLDER_EMAIL", "jane.doe@example.com"),
    "phone": os.getenv("RESUME_PLACEHOLDER_PHONE", "+1 555 0100"),
    "location": os.getenv("RESUME_PLACEHOLDER_LOCATION", "Remote"),
}

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(level: str = None) -> None:
    """Set up root logging once for the process."""
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(message)s",
        level=(level or LOG_LEVEL).upper(),
    )
