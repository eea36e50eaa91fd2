import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./multipost.db")
    fernet_key: str = os.getenv("FERNET_KEY", "")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    linkedin_client_id: str = os.getenv("LINKEDIN_CLIENT_ID", "")
    linkedin_client_secret: str = os.getenv("LINKEDIN_CLIENT_SECRET", "")
    linkedin_redirect_uri: str = os.getenv("LINKEDIN_REDIRECT_URI", "http://localhost:8000/settings/linkedin/callback")
    # OpenID sub is stored as platform_user_id and used as the post author.
    linkedin_scopes: str = os.getenv("LINKEDIN_SCOPES", "openid profile w_member_social")

    bluesky_service_url: str = os.getenv("BLUESKY_SERVICE_URL", "https://bsky.social")
    bluesky_max_blob_bytes: int = int(os.getenv("BLUESKY_MAX_BLOB_BYTES", "1000000"))

    frontend_url: str = os.getenv("FRONTEND_URL", "http://localhost:5173")

    http_timeout_seconds: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))
    token_refresh_margin_seconds: int = int(os.getenv("TOKEN_REFRESH_MARGIN_SECONDS", "300"))
    oauth_state_ttl_seconds: int = int(os.getenv("OAUTH_STATE_TTL_SECONDS", "600"))

    max_media_files: int = int(os.getenv("MAX_MEDIA_FILES", "4"))
    max_media_bytes: int = int(os.getenv("MAX_MEDIA_BYTES", str(10 * 1024 * 1024)))

settings = Settings()
