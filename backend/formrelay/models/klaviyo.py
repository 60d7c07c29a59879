"""
Tagged result type for Klaviyo API calls.

The client never raises on an HTTP status. Each call returns an ApiResult
whose kind tells the workflow which branch it is on:

  SUCCESS       2xx
  CONFLICT      409 (profile already exists)
  CLIENT_ERROR  any other 4xx
  SERVER_ERROR  5xx, or the request never got a response (status is None)

Klaviyo error bodies follow JSON:API:

  {"errors": [{"status": 409, "code": "duplicate_profile",
               "detail": "...", "source": {"pointer": "/data/attributes"},
               "meta": {"duplicate_profile_id": "01H..."}}]}
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ResultKind(str, Enum):
    SUCCESS = "success"
    CONFLICT = "conflict"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"


def classify_status(status: Optional[int]) -> ResultKind:
    if status is None:
        return ResultKind.SERVER_ERROR
    if 200 <= status < 300:
        return ResultKind.SUCCESS
    if status == 409:
        return ResultKind.CONFLICT
    if 400 <= status < 500:
        return ResultKind.CLIENT_ERROR
    return ResultKind.SERVER_ERROR


@dataclass(frozen=True)
class ApiResult:
    kind: ResultKind
    status: Optional[int]
    body: Any = None
    errors: list = field(default_factory=list)

    @classmethod
    def from_response(cls, status: Optional[int], body: Any) -> "ApiResult":
        errors = []
        if isinstance(body, dict) and isinstance(body.get("errors"), list):
            errors = [e for e in body["errors"] if isinstance(e, dict)]
        return cls(kind=classify_status(status), status=status, body=body, errors=errors)

    @property
    def ok(self) -> bool:
        return self.kind is ResultKind.SUCCESS

    @property
    def data(self) -> Any:
        if isinstance(self.body, dict):
            return self.body.get("data")
        return None

    @property
    def duplicate_profile_id(self) -> Optional[str]:
        """Profile id reported in a 409 response's error metadata, if any."""
        for error in self.errors:
            meta = error.get("meta") or {}
            duplicate_id = meta.get("duplicate_profile_id")
            if duplicate_id:
                return str(duplicate_id)
        return None

    @property
    def is_sms_region_rejection(self) -> bool:
        """
        True when a 4xx says SMS consent cannot be granted for this phone.

        Klaviyo reports this either as a detail message mentioning the region
        not being supported, or as a validation error whose source pointer
        references the phone_number attribute.
        """
        if self.kind is not ResultKind.CLIENT_ERROR:
            return False
        for error in self.errors:
            detail = str(error.get("detail") or "").lower()
            if "region" in detail and "not supported" in detail:
                return True
            pointer = str((error.get("source") or {}).get("pointer") or "")
            if "phone_number" in pointer:
                return True
        return False
