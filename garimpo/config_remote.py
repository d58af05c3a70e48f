"""Configuration loader/validator for the remote catalog store (BYO creds)."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from garimpo.config import RemoteConfig


class RemoteConfigError(ValueError):
    pass


@dataclass
class RemoteCredentials:
    url: str
    api_key: Optional[str] = None


def _clean(v) -> str:
    return str(v or "").strip()


def is_valid_url(url: str) -> bool:
    return len(url) > 10 and url.startswith(("http://", "https://"))


def load_remote_credentials(cfg: Optional[RemoteConfig] = None) -> RemoteCredentials:
    """Read the remote endpoint from the environment (and ``.env``).

    Raises ``RemoteConfigError`` when the URL is missing or not http(s).
    """
    cfg = cfg or RemoteConfig()
    load_dotenv()
    url = _clean(os.environ.get(cfg.url_env))
    key = _clean(os.environ.get(cfg.key_env)) or None

    if not url:
        raise RemoteConfigError(
            f"{cfg.url_env} is missing. Set it in the environment to enable the remote store."
        )
    if not is_valid_url(url):
        raise RemoteConfigError(f"{cfg.url_env} must be an http(s) URL (got {url!r}).")
    return RemoteCredentials(url=url.rstrip("/"), api_key=key)
