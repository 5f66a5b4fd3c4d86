"""HTTP client for the clinic backend.

This module provides the requests-based client that the booking workflows
use to talk to the clinic's JSON API. It manages the bearer token, HTTP
session handling with an optional retry policy for idempotent reads, and
maps HTTP failures onto the scheduling error taxonomy so that callers never
see a raw ``requests`` exception.
"""
from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

import requests
from requests import Response
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from scheduling.errors import (
    AuthError,
    BackendRejected,
    ConflictError,
    DataIntegrityError,
    TransportError,
)
from scheduling.models import (
    Appointment,
    BookingRequest,
    CancellationRequest,
    Doctor,
    Patient,
    ScheduleEntry,
    Specialty,
)

__all__ = ["AuthSession", "ClinicAPIClient"]


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BASE_URL = os.getenv("CLINIC_API_BASE_URL", "http://localhost:5000/api")
DEFAULT_TOKEN = os.getenv("CLINIC_API_TOKEN")
DEFAULT_TIMEOUT_SECONDS = float(os.getenv("CLINIC_API_TIMEOUT", "10"))
DEFAULT_MAX_RETRIES = int(os.getenv("CLINIC_API_MAX_RETRIES", "0"))
DEFAULT_BACKOFF_FACTOR = float(os.getenv("CLINIC_API_BACKOFF", "0.5"))

RETRY_STATUS_CODES = (429, 502, 503, 504)


@dataclass(frozen=True)
class AuthSession:
    """Identity returned by the backend after a successful login."""

    token: str
    user_id: str
    fullname: str = ""
    role: str = ""


def _error_message(response: Response) -> str:
    content_type = response.headers.get("Content-Type", "")
    if "json" in content_type:
        try:
            parsed = response.json()
        except ValueError:
            parsed = None
        if isinstance(parsed, Mapping):
            for key in ("message", "error", "detail"):
                if parsed.get(key):
                    return str(parsed[key])
    text = (response.text or "").strip()
    return text[:512] or f"HTTP {response.status_code}"


class ClinicAPIClient:
    """Client for the clinic backend's booking API."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        token: Optional[str] = DEFAULT_TOKEN,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url must be provided")
        if timeout <= 0:
            raise ValueError("timeout must be positive")

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or self._build_session(max_retries=max_retries, backoff_factor=backoff_factor)
        self._token_lock = threading.Lock()
        self._token: Optional[str] = token or None

    @staticmethod
    def _build_session(*, max_retries: int, backoff_factor: float) -> requests.Session:
        session = requests.Session()
        if max_retries > 0:
            # Reads only; a retried POST could book or cancel twice.
            retry_strategy = Retry(
                total=max_retries,
                read=max_retries,
                connect=max_retries,
                status=max_retries,
                backoff_factor=backoff_factor,
                status_forcelist=RETRY_STATUS_CODES,
                allowed_methods=("GET",),
                raise_on_status=False,
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        return session

    @property
    def token(self) -> Optional[str]:
        return self._token

    def set_token(self, token: Optional[str]) -> None:
        with self._token_lock:
            self._token = token or None

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_payload: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
    ) -> Any:
        if not path:
            raise ValueError("path must be provided")

        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        token = self._token
        if authenticated and token:
            headers["Authorization"] = f"Bearer {token}"

        logger.debug("%s %s", method.upper(), url)
        try:
            response = self._session.request(
                method=method.upper(),
                url=url,
                json=json_payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            logger.error("Request to clinic backend timed out: %s", exc)
            raise TransportError(f"Request to {path} timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            logger.error("Request to clinic backend failed: %s", exc)
            raise TransportError(f"Failed to reach the clinic backend: {exc}") from exc

        self._raise_for_status(response)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            logger.error("Invalid JSON from clinic backend for %s: %s", path, exc)
            raise DataIntegrityError(f"Clinic backend returned invalid JSON for {path}") from exc

    @staticmethod
    def _raise_for_status(response: Response) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return

        message = _error_message(response)
        if status >= 500:
            logger.error("Clinic backend error response: status=%s body=%s", status, message)
            raise TransportError(message, status_code=status)
        logger.warning("Clinic backend refused request: status=%s body=%s", status, message)
        if status == 409:
            raise ConflictError(message, status_code=status)
        if status in (401, 403):
            raise AuthError(message, status_code=status)
        raise BackendRejected(message, status_code=status)

    @staticmethod
    def _as_object(payload: Any, label: str) -> Mapping[str, Any]:
        if isinstance(payload, Mapping) and isinstance(payload.get("data"), Mapping):
            payload = payload["data"]
        if not isinstance(payload, Mapping):
            raise DataIntegrityError(f"Expected a {label} object from the clinic backend")
        return payload

    @staticmethod
    def _as_list(payload: Any, label: str, parse: Callable[[Mapping[str, Any]], T]) -> List[T]:
        if payload is None:
            return []
        if isinstance(payload, Mapping) and isinstance(payload.get("data"), list):
            payload = payload["data"]
        if not isinstance(payload, list):
            raise DataIntegrityError(f"Expected a list of {label} from the clinic backend")
        return [parse(item) for item in payload]

    def login(self, phone_number: str, password: str) -> AuthSession:
        """Authenticate and keep the returned bearer token for later calls."""

        if not phone_number or not password:
            raise ValueError("phone_number and password must be provided")
        data = self._as_object(
            self._request(
                "POST",
                "auth/login",
                json_payload={"phoneNumber": phone_number, "password": password},
                authenticated=False,
            ),
            "login",
        )
        token = data.get("token")
        user = data.get("user")
        if not token or not isinstance(token, str) or not isinstance(user, Mapping) or "id" not in user:
            raise AuthError("Login response did not include a token and user")

        self.set_token(token)
        logger.info("Authenticated clinic user %s", user["id"])
        return AuthSession(
            token=token,
            user_id=str(user["id"]),
            fullname=str(user.get("fullname") or ""),
            role=str(user.get("role") or ""),
        )

    def list_doctors(self) -> List[Doctor]:
        return self._as_list(self._request("GET", "doctors"), "doctors", Doctor.from_payload)

    def list_specialties(self) -> List[Specialty]:
        return self._as_list(self._request("GET", "specialties"), "specialties", Specialty.from_payload)

    def list_doctors_by_specialty(self, specialty_id: str) -> List[Doctor]:
        if not specialty_id:
            raise ValueError("specialty_id must be provided")
        payload = self._request("GET", f"doctors/specialty/{specialty_id}")
        return self._as_list(payload, "doctors", Doctor.from_payload)

    def get_doctor(self, doctor_id: str) -> Doctor:
        if not doctor_id:
            raise ValueError("doctor_id must be provided")
        return Doctor.from_payload(self._as_object(self._request("GET", f"doctors/{doctor_id}"), "doctor"))

    def get_schedules_for_doctor(self, doctor_id: str) -> List[ScheduleEntry]:
        """Return the doctor's parseable schedule entries.

        A malformed entry is logged and left out, so it can never be booked,
        while the rest of the schedule stays usable.
        """

        if not doctor_id:
            raise ValueError("doctor_id must be provided")
        payload = self._request("GET", f"schedules/doctor/{doctor_id}")
        entries: List[ScheduleEntry] = []
        for item in self._as_list(payload, "schedules", lambda item: item):
            try:
                entries.append(ScheduleEntry.from_payload(item, doctor_id=str(doctor_id)))
            except DataIntegrityError as exc:
                logger.error("Skipping malformed schedule entry for doctor %s: %s", doctor_id, exc)
        return entries

    def get_patient_by_user_id(self, user_id: str) -> Patient:
        if not user_id:
            raise ValueError("user_id must be provided")
        payload = self._request("GET", f"patients/user/{user_id}")
        return Patient.from_payload(self._as_object(payload, "patient"))

    def create_appointment(self, request: BookingRequest) -> Appointment:
        """Ask the backend to reserve a slot; a full slot surfaces as ``ConflictError``."""

        payload = self._request("POST", "appointments", json_payload=request.to_payload())
        return Appointment.from_payload(self._as_object(payload, "appointment"))

    def set_appointment_status(self, request: CancellationRequest) -> Appointment:
        payload = self._request(
            "POST",
            f"appointments/{request.appointment_id}/status",
            json_payload=request.to_payload(),
        )
        return Appointment.from_payload(self._as_object(payload, "appointment"))

    def get_appointments_for_patient(self, patient_id: str) -> List[Appointment]:
        if not patient_id:
            raise ValueError("patient_id must be provided")
        payload = self._request("GET", f"appointments/patient/{patient_id}")
        return self._as_list(payload, "appointments", Appointment.from_payload)
