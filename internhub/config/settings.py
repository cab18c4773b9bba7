"""
internhub/config/settings.py
Environment-driven settings and program constants.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
ENV_FILE = PROJECT_ROOT / ".env"

load_dotenv(dotenv_path=ENV_FILE)

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./internhub.db")

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

ALLOWED_ORIGINS = [o for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o]

# Uploaded weekly report documents
REPORT_STORAGE_DIR = os.getenv("REPORT_STORAGE_DIR", str(PROJECT_ROOT / "uploads" / "weekly-reports"))
REPORT_BASE_URL = os.getenv("REPORT_BASE_URL", "/files/weekly-reports")
MAX_REPORT_FILE_BYTES = int(os.getenv("MAX_REPORT_FILE_BYTES", str(10 * 1024 * 1024)))
ALLOWED_REPORT_EXTENSIONS = (".pdf", ".doc", ".docx")

# Program rules
DEFAULT_MAX_STUDENTS = int(os.getenv("DEFAULT_MAX_STUDENTS", "20"))
TOTAL_WEEKS = 13
COMPLETION_THRESHOLD_WEEKS = 8
GRADE_MIN = 0
GRADE_MAX = 10
