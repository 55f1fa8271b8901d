from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_API_URL = "https://api.dune.com/api/v1"
DEFAULT_HTTP_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 60.0


@dataclass
class DuneConfig:
    api_key: str
    api_url: str = DEFAULT_API_URL
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL


@dataclass
class HttpClientConfig:
    timeout_seconds: float = DEFAULT_HTTP_TIMEOUT


@dataclass
class Config:
    dune: DuneConfig
    http: HttpClientConfig = field(default_factory=HttpClientConfig)

    @classmethod
    def from_env(cls, *, api_key: str | None = None) -> Config:
        load_dotenv_if_present()
        api_key = api_key or os.getenv("DUNE_API_KEY")
        if not api_key:
            raise ValueError("DUNE_API_KEY environment variable is required")
        return cls(
            dune=DuneConfig(
                api_key=api_key,
                api_url=os.getenv("DUNE_API_URL", DEFAULT_API_URL).rstrip("/"),
                poll_interval_seconds=_float_env("DUNE_POLL_INTERVAL", DEFAULT_POLL_INTERVAL),
            ),
            http=HttpClientConfig(
                timeout_seconds=_float_env("DUNE_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
            ),
        )


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def load_dotenv_if_present() -> None:
    """Load a local .env (cwd, then home) unless disabled or a key is already set."""
    if os.environ.get("DUNE_PAGER_SKIP_DOTENV"):
        return
    if os.environ.get("DUNE_API_KEY"):
        return
    for candidate in (os.path.join(os.getcwd(), ".env"), os.path.expanduser("~/.env")):
        if not os.path.exists(candidate):
            continue
        with open(candidate, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                k, v = line.split("=", 1)
                k = k.strip()
                v = v.strip().strip('"').strip("'")
                if k and v and k not in os.environ:
                    os.environ[k] = v
