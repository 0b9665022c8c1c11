"""
registry.py -- Authenticated read-only access to the upstream evidence registry.

Every registry call goes through RegistryClient.get_json(), the single HTTP
seam. It attaches the session's bearer token and tenant header, measures
latency, reports each call to the AuditSink, and turns any failure into a
RegistryError. Endpoint wrappers below return raw JSON; core/adapters.py owns
the mapping from upstream shapes to domain records.

Error policy: get_json() always raises on failure. Multi-strategy components
catch RegistryError per strategy and move on; only authoritative single calls
let it reach the caller.
"""

import logging
import os
import re
import time
from typing import Any, Optional, Protocol, runtime_checkable
from urllib.parse import quote

import requests

from .config import Settings
from .models import Session

logger = logging.getLogger("posturelens.registry")
security_logger = logging.getLogger("posturelens.security")
audit_logger = logging.getLogger("posturelens.audit")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class RegistryError(Exception):
    """The registry returned a non-success status or the transport failed.

    status_code is 0 when no HTTP response was received.
    """

    def __init__(self, endpoint: str, status_code: int, message: str) -> None:
        super().__init__(f"Registry API error on {endpoint}: {message}")
        self.endpoint = endpoint
        self.status_code = status_code


class RegistryAccessDenied(RegistryError):
    """HTTP 403 from the registry. Reported to the audit sink before raising."""


def sanitize_error(message: str) -> str:
    """Redact bearer tokens and home paths from error text before logging."""
    if not message:
        return message
    sanitized = re.sub(r"Bearer\s+\S+", "Bearer [REDACTED]", message)
    sanitized = re.sub(r"Authorization:\s*\S+", "Authorization: [REDACTED]", sanitized)
    sanitized = re.sub(r"(access_token|token)=[^&\s]+", r"\1=[REDACTED]", sanitized)
    home = os.environ.get("HOME") or ""
    if home:
        sanitized = sanitized.replace(home, "[USER_HOME]")
    return sanitized


# ---------------------------------------------------------------------------
# Audit sink
# ---------------------------------------------------------------------------


@runtime_checkable
class AuditSink(Protocol):
    """Fire-and-forget destination for per-call audit records."""

    def record(self, endpoint: str, status_code: int, duration_ms: float, success: bool) -> None: ...

    def security_denial(self, endpoint: str, tenant_id: str, user_id: str, detail: str) -> None: ...


class LoggingAuditSink:
    """Default sink: structured lines on the posturelens.audit / .security loggers."""

    def record(self, endpoint: str, status_code: int, duration_ms: float, success: bool) -> None:
        audit_logger.info(
            "registry_api_call endpoint=%s status=%s duration_ms=%.1f result=%s",
            endpoint,
            status_code,
            duration_ms,
            "success" if success else "failure",
        )

    def security_denial(self, endpoint: str, tenant_id: str, user_id: str, detail: str) -> None:
        security_logger.error(
            "Tenant access denied endpoint=%s tenant=%s user=%s detail=%s",
            endpoint,
            tenant_id,
            user_id,
            detail,
        )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


def _segment(value: str) -> str:
    return quote(value, safe="")


class RegistryClient:
    """Read-only registry client bound to one pre-authenticated session.

    The underlying requests.Session is shared by all calls on this client
    (connection pooling, including the detail fetch worker threads).
    """

    def __init__(
        self,
        settings: Settings,
        session: Session,
        audit: Optional[AuditSink] = None,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.settings = settings
        self.session = session
        self.audit = audit or LoggingAuditSink()
        self._base_url = settings.registry_url.rstrip("/")
        self._timeout = settings.request_timeout
        if http is None:
            http = requests.Session()
            http.max_redirects = settings.max_redirects
        self._http = http
        self._headers = {
            "Authorization": f"Bearer {session.access_token}",
            "X-Tenant-ID": session.tenant_id,
            "Content-Type": "application/json",
        }

    @property
    def tenant_id(self) -> str:
        return self.session.tenant_id

    def get_json(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        """GET path under the registry base URL and return the decoded JSON body.

        None and empty-string params are dropped so callers can pass optional
        filters unconditionally.
        """
        query = {k: v for k, v in (params or {}).items() if v is not None and v != ""}
        start = time.monotonic()
        try:
            resp = self._http.get(
                f"{self._base_url}{path}",
                params=query or None,
                headers=self._headers,
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            duration_ms = (time.monotonic() - start) * 1000
            self._audit(path, 0, duration_ms, False)
            message = sanitize_error(str(e))
            logger.warning("FAIL %s (%.0fms): %s", path, duration_ms, message)
            raise RegistryError(path, 0, message) from e

        duration_ms = (time.monotonic() - start) * 1000
        self._audit(path, resp.status_code, duration_ms, resp.ok)

        if not resp.ok:
            body = sanitize_error(resp.text[:500])
            logger.warning("ERR %s %s (%.0fms)", resp.status_code, path, duration_ms)
            if resp.status_code == 403:
                self._report_denial(path, body)
                raise RegistryAccessDenied(path, 403, f"403 {resp.reason} - {body}")
            raise RegistryError(path, resp.status_code, f"{resp.status_code} {resp.reason} - {body}")

        logger.debug("OK %s %s (%.0fms, %d bytes)", resp.status_code, path, duration_ms, len(resp.content))
        try:
            return resp.json()
        except ValueError as e:
            raise RegistryError(path, resp.status_code, "response body is not valid JSON") from e

    def _audit(self, endpoint: str, status_code: int, duration_ms: float, success: bool) -> None:
        try:
            self.audit.record(endpoint, status_code, duration_ms, success)
        except Exception as e:  # noqa: BLE001 -- sink errors are logged
            logger.warning("Audit sink failed for %s: %s", endpoint, e)

    def _report_denial(self, endpoint: str, detail: str) -> None:
        try:
            self.audit.security_denial(endpoint, self.session.tenant_id, self.session.user_id, detail)
        except Exception as e:  # noqa: BLE001 -- sink errors are logged
            logger.warning("Security audit failed for %s: %s", endpoint, e)

    # ------------------------------------------------------------------
    # Catalog and asset metadata
    # ------------------------------------------------------------------

    def catalog(self) -> Any:
        """Org-wide compliance catalog: applications with child assets and attestations."""
        return self.get_json("/evidence/assets/compliance")

    def asset_metadata(self, repository: str) -> Any:
        return self.get_json("/assets", {"repository": repository})

    def asset_commits(self, asset_uuid: str) -> Any:
        return self.get_json(f"/assets/{_segment(asset_uuid)}/commits")

    # ------------------------------------------------------------------
    # Notes / evidence
    # ------------------------------------------------------------------

    def query_notes(self, params: dict[str, Any]) -> Any:
        """Filterable note search (type, path, commit, repositoryId, from, to, ...)."""
        return self.get_json("/notes", params)

    def query_evidence_notes(self, params: dict[str, Any]) -> Any:
        """Older evidence search surface; accepts project/repository filters."""
        return self.get_json("/evidence/notes", params)

    def note_detail(self, note_uuid: str) -> Any:
        return self.get_json(f"/evidence/notes/{_segment(note_uuid)}")

    def note_chain(self, note_uuid: str) -> Any:
        return self.get_json(f"/evidence/notes/{_segment(note_uuid)}/chain")

    def asset_attestations(self, asset_uuid: str, commit: Optional[str] = None) -> Any:
        return self.get_json(f"/evidence/assets/{_segment(asset_uuid)}/attestations", {"commit": commit})

    def attestation_snapshot(self, asset_uuid: str, commit: Optional[str] = None) -> Any:
        return self.get_json(
            f"/evidence/assets/{_segment(asset_uuid)}/attestations/snapshot",
            {"commit": commit},
        )

    # ------------------------------------------------------------------
    # Policy gates and controls
    # ------------------------------------------------------------------

    def asset_gate_controls(self, asset_uuid: str) -> Any:
        return self.get_json(f"/assets/{_segment(asset_uuid)}/gates/policies/controls")

    def child_gate_controls(self, asset_uuid: str) -> Any:
        return self.get_json(f"/assets/children/{_segment(asset_uuid)}/gates/policies/controls")

    def gates(self) -> Any:
        return self.get_json("/console/gates")

    def gate_controls(self, gate_key: str) -> Any:
        return self.get_json(f"/console/gates/{_segment(gate_key)}/policies/controls")

    def controls(self, framework: Optional[str] = None, severity: Optional[str] = None) -> Any:
        """Controls catalog with display names and severities, optionally filtered."""
        return self.get_json("/console/controls", {"framework": framework, "severity": severity})

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def trend_metrics(self, start: str, end: str) -> Any:
        return self.get_json("/metrics/trends/heatbar/control", {"start": start, "end": end})
