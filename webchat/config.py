import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Load .env from current directory so Supabase and VAPID keys are set automatically.
load_dotenv()


class Settings(BaseModel):
    """Runtime configuration loaded from environment variables."""

    supabase_jwt_secret: Optional[str]
    supabase_jwt_audience: Optional[str]
    web_push_api_token: Optional[str]
    web_push_public_key: Optional[str]
    web_push_private_key: Optional[str]
    web_push_subject: str = "mailto:admin@fiducial.com"
    agent_learn_api_key: Optional[str]
    gateway_agent_id: str = "work"
    rate_limit_backend: str = "memory"
    db_path: str = "./data/webchat.db"
    cors_origins: str = "*"

    service_name: str = "webchat"
    http_port: int = 4280


@lru_cache(maxsize=1)
def _base_settings() -> Settings:
    """
    Base settings lookup.

    NOTE: We intentionally *do not* cache environment values that may change
    between tests – `get_settings` below re-creates Settings each time from
    the current environment. This helper only stores defaults.
    """

    return Settings(
        supabase_jwt_secret=None,
        supabase_jwt_audience="authenticated",
        web_push_api_token=None,
        web_push_public_key=None,
        web_push_private_key=None,
        agent_learn_api_key=None,
        gateway_agent_id="work",
        rate_limit_backend="memory",
        db_path="./data/webchat.db",
        cors_origins="*",
    )


def get_settings() -> Settings:
    """
    Return Settings built from the *current* environment.

    Tests mutate os.environ at runtime via monkeypatch, so we must read
    directly from the environment on each call instead of caching.
    """

    base = _base_settings()
    audience = os.getenv("SUPABASE_JWT_AUDIENCE")
    if audience is None:
        audience = base.supabase_jwt_audience

    return Settings(
        supabase_jwt_secret=os.getenv("SUPABASE_JWT_SECRET") or None,
        supabase_jwt_audience=audience or None,
        web_push_api_token=os.getenv("WEB_PUSH_API_TOKEN") or None,
        web_push_public_key=os.getenv("WEB_PUSH_PUBLIC_KEY") or os.getenv("NEXT_PUBLIC_WEB_PUSH_PUBLIC_KEY") or None,
        web_push_private_key=os.getenv("WEB_PUSH_PRIVATE_KEY") or None,
        web_push_subject=os.getenv("WEB_PUSH_SUBJECT") or base.web_push_subject,
        agent_learn_api_key=os.getenv("AGENT_LEARN_API_KEY") or None,
        gateway_agent_id=os.getenv("GATEWAY_AGENT_ID") or base.gateway_agent_id,
        rate_limit_backend=(os.getenv("RATE_LIMIT_BACKEND") or base.rate_limit_backend).lower(),
        db_path=os.getenv("DB_PATH") or base.db_path,
        cors_origins=os.getenv("CORS_ORIGINS") or base.cors_origins,
        service_name=base.service_name,
        http_port=int(os.getenv("PORT") or base.http_port),
    )
