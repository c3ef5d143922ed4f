from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_JOBBOARD_BASE_URL = "http://localhost:5000"
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"


@dataclass(frozen=True)
class PortalSettings:
    jobboard_base_url: str = DEFAULT_JOBBOARD_BASE_URL
    gemini_api_key: str = ""
    gemini_model: str = DEFAULT_GEMINI_MODEL
    gemini_base_url: str = DEFAULT_GEMINI_BASE_URL
    upstream_timeout: float = 15.0

    @classmethod
    def from_env(cls) -> PortalSettings:
        return cls(
            jobboard_base_url=os.getenv("JOBBOARD_BASE_URL", DEFAULT_JOBBOARD_BASE_URL).rstrip("/"),
            gemini_api_key=os.getenv("GEMINI_API_KEY", "").strip(),
            gemini_model=os.getenv("GEMINI_MODEL", DEFAULT_GEMINI_MODEL).strip(),
            gemini_base_url=os.getenv("GEMINI_BASE_URL", DEFAULT_GEMINI_BASE_URL).rstrip("/"),
            upstream_timeout=float(os.getenv("PORTAL_UPSTREAM_TIMEOUT", "15")),
        )

    @property
    def generate_content_url(self) -> str:
        return f"{self.gemini_base_url}/models/{self.gemini_model}:generateContent"
