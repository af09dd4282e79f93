from pathlib import Path
import os

from dotenv import load_dotenv

# Load environment variables from repo root (if present).
REPO_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(REPO_ROOT / ".env")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./apolo.db")
SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

_cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000")
CORS_ORIGINS = [origin.strip() for origin in _cors_origins.split(",") if origin.strip()]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "text")

# Client side
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000/api")
POSITION_GAP = float(os.getenv("POSITION_GAP", "1000"))
POSITION_EPSILON = float(os.getenv("POSITION_EPSILON", "0.001"))
NOTIFICATION_LIMIT = int(os.getenv("NOTIFICATION_LIMIT", "20"))
