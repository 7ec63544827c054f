"""HTTP client for the Rezzy backend API.

Every call carries a bounded timeout and every failure is converted into one
of the classified errors in :mod:`rezzy.errors` before it reaches a caller.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from rezzy.errors import (
    BackendUnavailable,
    GatewayTimeout,
    QuotaExceeded,
    ServerFault,
    ValidationRejected,
)

_LOGGER = logging.getLogger(__name__)

# Per-call timeouts (seconds).
HEALTH_TIMEOUT = 5.0
PLAN_TIMEOUT = 5.0
PROFILE_TIMEOUT = 5.0
ACCOUNT_TIMEOUT = 10.0
PROFILE_UPDATE_TIMEOUT = 10.0
FEATURE_TIMEOUT = 15.0
UPLOAD_TIMEOUT = 15.0
BILLING_TIMEOUT = 10.0


def _error_detail(response: requests.Response) -> Optional[str]:
    """Pull a human-readable message out of an error body, if there is one."""
    try:
        payload = response.json()
    except ValueError:
        text = (response.text or "").strip()
        return text[:300] or None

    if isinstance(payload, dict):
        for key in ("detail", "error", "message"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def classify_response(response: requests.Response) -> None:
    """Raise the classified error for a non-2xx response."""
    status = response.status_code
    if 200 <= status < 300:
        return
    if status == 403:
        raise QuotaExceeded(_error_detail(response), status_code=status)
    if 400 <= status < 500:
        raise ValidationRejected(_error_detail(response), status_code=status)
    raise ServerFault(status_code=status)


class GatewayClient:
    """Thin wrapper around :class:`requests.Session` bound to one base URL."""

    def __init__(self, base_url: str, http: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self._http = http or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _send(
        self,
        method: str,
        path: str,
        *,
        timeout: float,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        url = self._url(path)
        try:
            response = self._http.request(
                method,
                url,
                params=params,
                data=data,
                files=files,
                timeout=timeout,
            )
        except requests.Timeout as exc:
            _LOGGER.warning("%s %s timed out after %.1fs", method, path, timeout)
            raise GatewayTimeout() from exc
        except requests.RequestException as exc:
            _LOGGER.warning("%s %s failed: %s", method, path, exc)
            raise BackendUnavailable() from exc

        classify_response(response)
        return response

    def _json(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        response = self._send(method, path, **kwargs)
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            _LOGGER.error("Non-JSON response from %s %s", method, path)
            raise ServerFault(status_code=response.status_code) from exc
        if isinstance(payload, dict):
            return payload
        return {"items": payload}

    # Account and profile

    def health(self, timeout: float = HEALTH_TIMEOUT) -> None:
        self._send("GET", "/health", timeout=timeout)

    def create_account(
        self,
        user_id: str,
        email: str,
        first_name: str,
        last_name: str,
        timeout: float = ACCOUNT_TIMEOUT,
    ) -> Dict[str, Any]:
        """Create-or-get the backend user record; the backend upserts on user id."""
        return self._json(
            "POST",
            "/api/create-user",
            timeout=timeout,
            data={
                "user_id": user_id,
                "email": email,
                "first_name": first_name,
                "last_name": last_name,
            },
        )

    def get_plan(self, user_id: str, timeout: float = PLAN_TIMEOUT) -> Dict[str, Any]:
        return self._json("GET", "/api/get-plan", timeout=timeout, params={"user_id": user_id})

    def get_profile(self, user_id: str, timeout: float = PROFILE_TIMEOUT) -> Dict[str, Any]:
        return self._json("GET", f"/api/profile/{user_id}", timeout=timeout)

    def update_profile(
        self,
        user_id: str,
        first_name: str,
        last_name: str,
        position_level: str,
        job_category: str,
        middle_name: str = "",
        timeout: float = PROFILE_UPDATE_TIMEOUT,
    ) -> Dict[str, Any]:
        return self._json(
            "POST",
            "/api/update-profile",
            timeout=timeout,
            data={
                "user_id": user_id,
                "first_name": first_name,
                "middle_name": middle_name,
                "last_name": last_name,
                "position_level": position_level,
                "job_category": job_category,
            },
        )

    # Feature actions

    def feature_action(
        self,
        path: str,
        user_id: str,
        fields: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        timeout: float = FEATURE_TIMEOUT,
    ) -> Dict[str, Any]:
        """POST a quota-gated feature request and return its JSON payload."""
        data = {key: value for key, value in (fields or {}).items() if value is not None}
        data["user_id"] = user_id
        return self._json("POST", path, timeout=timeout, data=data, files=files)

    def download(
        self,
        path: str,
        user_id: str,
        timeout: float = FEATURE_TIMEOUT,
    ) -> requests.Response:
        return self._send("GET", path, timeout=timeout, params={"user_id": user_id})

    def job_recommendations(self, user_id: str, time_filter: str, timeout: float = FEATURE_TIMEOUT) -> Dict[str, Any]:
        return self._json(
            "GET",
            f"/api/job-recommendations/{user_id}",
            timeout=timeout,
            params={"time_filter": time_filter},
        )

    def list_optimized_resumes(self, user_id: str, timeout: float = PLAN_TIMEOUT) -> Dict[str, Any]:
        return self._json("GET", f"/api/optimized-resumes/{user_id}", timeout=timeout)

    def list_interview_preparations(self, user_id: str, timeout: float = PLAN_TIMEOUT) -> Dict[str, Any]:
        return self._json("GET", f"/api/interview-preparations/{user_id}", timeout=timeout)

    # Billing

    def create_checkout(
        self,
        user_id: str,
        plan: str,
        success_url: str,
        cancel_url: str,
        timeout: float = BILLING_TIMEOUT,
    ) -> Dict[str, Any]:
        return self._json(
            "POST",
            "/api/create-checkout-session",
            timeout=timeout,
            data={
                "user_id": user_id,
                "plan": plan,
                "success_url": success_url,
                "cancel_url": cancel_url,
            },
        )

    def upgrade_subscription(self, user_id: str, plan: str, timeout: float = BILLING_TIMEOUT) -> Dict[str, Any]:
        return self._json(
            "POST",
            "/api/upgrade-subscription",
            timeout=timeout,
            data={"user_id": user_id, "new_plan": plan},
        )

    def get_subscription(self, user_id: str, timeout: float = BILLING_TIMEOUT) -> Dict[str, Any]:
        return self._json("GET", f"/api/subscription/{user_id}", timeout=timeout)

    def cancel_subscription(self, user_id: str, timeout: float = BILLING_TIMEOUT) -> Dict[str, Any]:
        return self._json(
            "POST",
            "/api/cancel-subscription",
            timeout=timeout,
            data={"user_id": user_id},
        )

    # Job tracker

    def list_applications(self, user_id: str, timeout: float = PLAN_TIMEOUT) -> Dict[str, Any]:
        return self._json("GET", f"/api/job-applications/{user_id}", timeout=timeout)

    def add_application(
        self,
        user_id: str,
        fields: Dict[str, Any],
        timeout: float = PROFILE_UPDATE_TIMEOUT,
    ) -> Dict[str, Any]:
        data = {key: value for key, value in fields.items() if value is not None}
        data["user_id"] = user_id
        return self._json("POST", "/api/job-applications", timeout=timeout, data=data)

    def update_application(
        self,
        application_id: str,
        user_id: str,
        fields: Dict[str, Any],
        timeout: float = PROFILE_UPDATE_TIMEOUT,
    ) -> Dict[str, Any]:
        data = {key: value for key, value in fields.items() if value is not None}
        data["user_id"] = user_id
        return self._json("PUT", f"/api/job-applications/{application_id}", timeout=timeout, data=data)

    def update_application_status(
        self,
        application_id: str,
        status: str,
        timeout: float = PROFILE_UPDATE_TIMEOUT,
    ) -> Dict[str, Any]:
        return self._json(
            "PUT",
            f"/api/job-applications/{application_id}/status",
            timeout=timeout,
            data={"status": status},
        )

    def delete_application(self, application_id: str, timeout: float = PROFILE_UPDATE_TIMEOUT) -> Dict[str, Any]:
        return self._json("DELETE", f"/api/job-applications/{application_id}", timeout=timeout)
