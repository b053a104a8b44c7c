import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Application configuration loaded from environment variables."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-change-me")

    # Database: defaults to SQLite, overridable via DATABASE_URL for PostgreSQL
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", "sqlite:///biblioteca.db"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # PostgreSQL connection pooling (ignored by SQLite)
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
    }

    # File storage
    UPLOAD_FOLDER = os.environ.get(
        "UPLOAD_FOLDER",
        os.path.join(os.path.dirname(os.path.abspath(__file__)), "uploads"),
    )
    MAX_CONTENT_LENGTH = 50 * 1024 * 1024  # 50 MB
    ALLOWED_EXTENSIONS = {"pdf"}
    UPLOAD_CHUNK_SIZE = 256 * 1024

    # Identity tokens (seconds)
    ID_TOKEN_MAX_AGE = int(os.environ.get("ID_TOKEN_MAX_AGE", 3600))
    LAST_ACTIVITY_INTERVAL = 300

    # Admin user listing
    USER_LIST_MAX = 1000

    # AI-enhanced search (local Ollama)
    OLLAMA_MODEL = os.environ.get("OLLAMA_MODEL", "llama3.2")
    AI_SEARCH_RETRIES = 3
