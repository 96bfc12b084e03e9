from __future__ import annotations

from dataclasses import dataclass
from http import HTTPStatus
from typing import Optional

# Results below this status are committed, the rest rolled back.
FAILURE_THRESHOLD = 400


def is_success(status: int) -> bool:
    return status < FAILURE_THRESHOLD


@dataclass
class OperationResult:
    """
    Generic result type for operations on the core.

    `status` is HTTP-like: it decides whether the transaction the operation
    ran in is committed, and the web interface answers with it directly.
    """

    status: int = HTTPStatus.OK
    error_message: Optional[str] = None
    team_id: Optional[int] = None

    @property
    def success(self) -> bool:
        return is_success(self.status)

    @classmethod
    def ok(cls, team_id: Optional[int] = None) -> OperationResult:
        return cls(status=HTTPStatus.OK, team_id=team_id)

    @classmethod
    def bad_request(cls, message: str) -> OperationResult:
        return cls(status=HTTPStatus.BAD_REQUEST, error_message=message)

    @classmethod
    def forbidden(cls, message: str) -> OperationResult:
        return cls(status=HTTPStatus.FORBIDDEN, error_message=message)

    @classmethod
    def not_found(cls, message: str) -> OperationResult:
        return cls(status=HTTPStatus.NOT_FOUND, error_message=message)

    @classmethod
    def conflict(cls, message: str) -> OperationResult:
        return cls(status=HTTPStatus.CONFLICT, error_message=message)

    @classmethod
    def service_unavailable(cls, message: str) -> OperationResult:
        return cls(status=HTTPStatus.SERVICE_UNAVAILABLE, error_message=message)
