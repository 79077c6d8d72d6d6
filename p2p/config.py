"""
Client settings: API location, lifecycle timings and EmailJS identifiers.

Defaults are the product constants. Override from the environment with
Settings.from_env() (variables prefixed P2P_), or pass values directly.
"""

import os
from dataclasses import dataclass, fields

DEFAULT_API_BASE_URL = "http://localhost:5000/api"
DEFAULT_WEBSITE_LINK = "http://localhost:5173"
ADMIN_EMAIL = "admin@tradehub.com"

SETTLEMENT_WINDOW_SECONDS = 30 * 60


@dataclass(frozen=True)
class Settings:
    api_base_url: str = DEFAULT_API_BASE_URL
    website_link: str = DEFAULT_WEBSITE_LINK
    admin_email: str = ADMIN_EMAIL

    settlement_window: int = SETTLEMENT_WINDOW_SECONDS
    poll_interval: float = 3.0
    tick_interval: float = 1.0
    terminal_redirect_delay: float = 3.0
    expiry_redirect_delay: float = 2.0
    initiate_redirect_delay: float = 2.0
    cancel_redirect_delay: float = 1.5

    emailjs_service_id: str = "service_2qm6sy5"
    emailjs_template_id: str = "template_2uw732e"
    emailjs_public_key: str = ""

    @classmethod
    def from_env(cls, environ=None, **overrides) -> "Settings":
        """Read P2P_<FIELD_NAME> variables, e.g. P2P_API_BASE_URL, P2P_POLL_INTERVAL."""
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = environ.get(f"P2P_{f.name.upper()}")
            if raw is None or raw == "":
                continue
            if f.type in (int, "int"):
                values[f.name] = int(raw)
            elif f.type in (float, "float"):
                values[f.name] = float(raw)
            else:
                values[f.name] = raw
        values.update(overrides)
        return cls(**values)
