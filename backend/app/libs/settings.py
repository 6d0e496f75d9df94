"""Runtime configuration.

Values come from the process environment (optionally seeded from a `.env`
file). Every service module reads its configuration from `get_settings()`.
"""

import json
import os
from functools import lru_cache
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

# Store document holding keys managed from the admin dashboard
API_KEYS_DOCUMENT = "settings/api_keys"


class Settings(BaseModel):
    """Typed view over the environment variables used by the backend."""
    database_url: Optional[str] = None

    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-pro"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"

    openrouter_api_key: Optional[str] = None
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    suggestion_model: str = "google/gemini-2.0-flash-001"

    cloudinary_cloud_name: str = "dyff2bufp"
    cloudinary_upload_preset: str = "stylo-preset"

    deploy_webhook_url: Optional[str] = None

    jwt_secret: str = "dev-secret"
    jwt_expire_minutes: int = 60 * 24 * 7

    razorpay_key_id: Optional[str] = None
    payment_currency: str = "INR"
    merchant_name: str = "Stylo Studio - Web Services"

    # Client-side store config injected into generated sites
    store_client_config: Dict[str, Any] = Field(default_factory=dict)


def _load_store_client_config() -> Dict[str, Any]:
    raw = os.environ.get("STORE_CLIENT_CONFIG")
    if not raw:
        return {}
    return json.loads(raw)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings from the environment once per process."""
    env = os.environ
    values: Dict[str, Any] = {
        "database_url": env.get("DATABASE_URL"),
        "gemini_api_key": env.get("GEMINI_API_KEY"),
        "openrouter_api_key": env.get("OPENROUTER_API_KEY"),
        "deploy_webhook_url": env.get("DEPLOY_WEBHOOK_URL"),
        "razorpay_key_id": env.get("RAZORPAY_KEY_ID"),
        "store_client_config": _load_store_client_config(),
    }
    optional = {
        "gemini_model": "GEMINI_MODEL",
        "gemini_base_url": "GEMINI_BASE_URL",
        "openrouter_base_url": "OPENROUTER_BASE_URL",
        "suggestion_model": "SUGGESTION_MODEL",
        "cloudinary_cloud_name": "CLOUDINARY_CLOUD_NAME",
        "cloudinary_upload_preset": "CLOUDINARY_UPLOAD_PRESET",
        "jwt_secret": "JWT_SECRET",
        "jwt_expire_minutes": "JWT_EXPIRE_MINUTES",
    }
    for field_name, env_name in optional.items():
        if env.get(env_name):
            values[field_name] = env[env_name]
    return Settings(**values)
