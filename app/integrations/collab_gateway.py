"""
Collaborative Document Store Gateway.

All outbound HTTP calls to the collaborative rich-text document service go
through this class. The only capability the decision core consumes is
"fetch the plain-text content of named fragments of document D".

Contract:
  - Never raises into core logic; returns a FragmentResult and callers check .ok
  - Missing document (404) or missing fragment → ok=True, fragment absent
  - Transport errors / 5xx → retried, then ok=False with an error message
  - Unconfigured credentials → ok=False, configured=False

Configuration (Flask app config):
  COLLAB_API_URL, COLLAB_APP_ID, COLLAB_SECRET, COLLAB_TIMEOUT

Testability: pass a mock `session` to CollabGateway() in tests, or
patch.object the module-level `collab_gateway`.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests
from flask import current_app

logger = logging.getLogger(__name__)

# ── Retry constants ────────────────────────────────────────────────────────
_RETRY_MAX = 2
_RETRY_BACKOFF_SECONDS = [0.5, 2]

_DEFAULT_TIMEOUT = 10


class FragmentResult:
    """Structured return value from fragment fetches.

    Attributes:
        ok:           True if the store answered (including "no such document").
        fragments:    fragment name -> plain text, only for fragments that exist.
        status_code:  HTTP status of the last attempt (None on network failure).
        error:        Human-readable error message or None.
        configured:   False when credentials are missing.
        duration_ms:  Round-trip latency of the last attempt.
    """

    def __init__(
        self,
        ok: bool,
        fragments: dict[str, str] | None = None,
        *,
        status_code: int | None = None,
        error: str | None = None,
        configured: bool = True,
        duration_ms: int = 0,
    ) -> None:
        self.ok = ok
        self.fragments = fragments or {}
        self.status_code = status_code
        self.error = error
        self.configured = configured
        self.duration_ms = duration_ms

    def __repr__(self):
        return f"<FragmentResult ok={self.ok} fragments={sorted(self.fragments)} error={self.error!r}>"


class CollabGateway:
    """Collaborative document store REST gateway.

    Usage:
        from app.integrations.collab_gateway import collab_gateway
        result = collab_gateway.get_document_fragments("doc-1", ["title", "budget"])
    """

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session: requests.Session | None = session

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    @staticmethod
    def _settings() -> dict[str, Any]:
        cfg = current_app.config
        return {
            "base_url": (cfg.get("COLLAB_API_URL") or "").rstrip("/"),
            "app_id": cfg.get("COLLAB_APP_ID"),
            "secret": cfg.get("COLLAB_SECRET"),
            "timeout": cfg.get("COLLAB_TIMEOUT") or _DEFAULT_TIMEOUT,
        }

    def is_configured(self) -> bool:
        settings = self._settings()
        return bool(settings["base_url"] and settings["app_id"] and settings["secret"])

    @staticmethod
    def _extract_fragments(body: Any, names: list[str]) -> dict[str, str]:
        if not isinstance(body, dict):
            return {}
        raw = body.get("fragments", body)
        if not isinstance(raw, dict):
            return {}
        return {name: raw[name] for name in names if raw.get(name) is not None}

    def get_document_fragments(
        self,
        document_id: str,
        fragment_names: list[str],
        fmt: str = "text",
    ) -> FragmentResult:
        """Fetch named fragments of a document as plain text.

        Returns:
            FragmentResult - always returns (never raises).
        """
        settings = self._settings()
        if not (settings["base_url"] and settings["app_id"] and settings["secret"]):
            logger.warning("Collaboration store not configured, cannot fetch doc=%s", document_id)
            return FragmentResult(
                ok=False, configured=False,
                error="Collaboration store credentials are not configured",
            )
        if not fragment_names:
            return FragmentResult(ok=True)

        url = f"{settings['base_url']}/documents/{document_id}/fragments"
        headers = {
            "Authorization": f"Bearer {settings['secret']}",
            "X-App-Id": str(settings["app_id"]),
            "Accept": "application/json",
        }
        params = {"names": ",".join(fragment_names), "format": fmt}
        timeout = settings["timeout"]

        last_error = "Unknown error"
        last_status: int | None = None
        duration_ms = 0

        for attempt in range(_RETRY_MAX + 1):
            try:
                t0 = time.perf_counter()
                resp = self.session.get(url, headers=headers, params=params, timeout=timeout)
                duration_ms = int((time.perf_counter() - t0) * 1000)
                last_status = resp.status_code

                if resp.status_code == 404:
                    logger.info("Collaboration doc=%s not found, treating as empty", document_id)
                    return FragmentResult(ok=True, status_code=404, duration_ms=duration_ms)

                if resp.ok:
                    try:
                        body = resp.json() if resp.content else {}
                    except ValueError:
                        body = {}
                    return FragmentResult(
                        ok=True,
                        fragments=self._extract_fragments(body, fragment_names),
                        status_code=resp.status_code,
                        duration_ms=duration_ms,
                    )

                last_error = f"HTTP {resp.status_code}: {resp.text[:500]}"
                logger.warning(
                    "Collab fetch failed attempt=%d/%d status=%d doc=%s",
                    attempt + 1, _RETRY_MAX + 1, resp.status_code, document_id,
                )
                if resp.status_code < 500:
                    break

            except requests.Timeout:
                last_error = f"Request timed out after {timeout}s"
                logger.warning(
                    "Collab fetch timed out attempt=%d/%d doc=%s",
                    attempt + 1, _RETRY_MAX + 1, document_id,
                )

            except requests.RequestException as exc:
                last_error = str(exc)[:500]
                logger.warning(
                    "Collab network error attempt=%d/%d doc=%s error=%s",
                    attempt + 1, _RETRY_MAX + 1, document_id, last_error,
                )

            if attempt < _RETRY_MAX:
                time.sleep(_RETRY_BACKOFF_SECONDS[min(attempt, len(_RETRY_BACKOFF_SECONDS) - 1)])

        return FragmentResult(
            ok=False,
            status_code=last_status,
            error=last_error,
            duration_ms=duration_ms,
        )


# Module-level singleton
collab_gateway = CollabGateway()
