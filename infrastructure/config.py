"""
Application configuration, loaded from environment variables.

A `.env` file in the working directory is honoured via python-dotenv, which
is convenient for local development.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from domain.errors import ConfigError
from domain.models import AntiCheatPolicy


@dataclass(frozen=True)
class Config:
    # The email address of the user who can administrate the hackathon.
    admin_email: str
    # The suffix to remove from user emails when listing them.
    email_suffix: str = ""
    max_teams_per_creator: int = 1
    # The number of coins that every user can spend on votes.
    coins_to_spend: int = 100
    anti_cheat_policy: AntiCheatPolicy = AntiCheatPolicy.ZERO

    # Assumed identity when the `X-Email` header is not set. In production the
    # header is set by an authenticating proxy; this is for local development.
    unsafe_default_email: Optional[str] = None

    listen_host: str = "127.0.0.1"
    listen_port: int = 5591
    # The url prefix, in case the app is not hosted at the root of a domain,
    # e.g. `/hack-o-matic`.
    url_prefix: str = ""
    num_threads: int = 1

    db_path: str = "hackathon.db"
    db_busy_timeout_ms: int = 30


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}.") from None


def load_config(env: Optional[Mapping[str, str]] = None) -> Config:
    """
    Build a `Config` from the environment.

    When `env` is None, `.env` is loaded first and `os.environ` is used.
    """

    if env is None:
        load_dotenv()
        env = os.environ

    admin_email = env.get("ADMIN_EMAIL", "").strip()
    if not admin_email:
        raise ConfigError("ADMIN_EMAIL environment variable is not set.")

    policy_name = env.get("ANTI_CHEAT_POLICY", AntiCheatPolicy.ZERO.value).strip().lower()
    try:
        policy = AntiCheatPolicy(policy_name)
    except ValueError:
        raise ConfigError(
            f"ANTI_CHEAT_POLICY must be 'zero' or 'flip', got {policy_name!r}."
        ) from None

    config = Config(
        admin_email=admin_email,
        email_suffix=env.get("EMAIL_SUFFIX", ""),
        max_teams_per_creator=_get_int(env, "MAX_TEAMS_PER_CREATOR", 1),
        coins_to_spend=_get_int(env, "COINS_TO_SPEND", 100),
        anti_cheat_policy=policy,
        unsafe_default_email=env.get("UNSAFE_DEFAULT_EMAIL") or None,
        listen_host=env.get("LISTEN_HOST", "127.0.0.1"),
        listen_port=_get_int(env, "LISTEN_PORT", 5591),
        url_prefix=env.get("URL_PREFIX", "").rstrip("/"),
        num_threads=_get_int(env, "NUM_THREADS", 1),
        db_path=env.get("DB_PATH", "hackathon.db"),
        db_busy_timeout_ms=_get_int(env, "DB_BUSY_TIMEOUT_MS", 30),
    )

    if config.coins_to_spend <= 0:
        raise ConfigError("COINS_TO_SPEND must be positive.")
    if config.num_threads <= 0:
        raise ConfigError("NUM_THREADS must be positive.")
    if config.db_busy_timeout_ms < 0:
        raise ConfigError("DB_BUSY_TIMEOUT_MS must not be negative.")

    return config
