from __future__ import annotations

import hashlib
import hmac
import secrets

from teampulse.config import settings

TOKEN_PREFIX = "tp_"
PLACEHOLDER_SECRETS = {"dev-secret-change-me", "replace_with_strong_random_secret"}


def api_token_hash(token: str) -> str:
  # Keyed hash so DB leaks don't allow offline token matching.
  key = (settings.app_secret or "").encode("utf-8")
  msg = (token or "").strip().encode("utf-8")
  return hmac.new(key, msg, hashlib.sha256).hexdigest()


def api_token_new() -> tuple[str, str]:
  """Returns (token, hint). Only the hash of `token` is ever stored."""
  token = TOKEN_PREFIX + secrets.token_urlsafe(32)
  return token, token[-4:]


def app_secret_is_placeholder() -> bool:
  s = (settings.app_secret or "").strip().lower()
  return not s or s in PLACEHOLDER_SECRETS
