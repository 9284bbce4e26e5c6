from __future__ import annotations

from http import HTTPStatus
from typing import Any


class ClubError(Exception):
    """Base class for errors surfaced to callers with a uniform detail shape."""

    status = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def to_detail(self, instance: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": type(self).__name__,
            "title": HTTPStatus(self.status).name,
            "status": int(self.status),
            "detail": self.detail,
        }
        if instance is not None:
            payload["instance"] = instance
        return payload


class ValidationError(ClubError):
    status = HTTPStatus.BAD_REQUEST


class UnauthorizedError(ClubError):
    status = HTTPStatus.UNAUTHORIZED


class ForbiddenError(ClubError):
    status = HTTPStatus.FORBIDDEN


class NotFoundError(ClubError):
    status = HTTPStatus.NOT_FOUND


class StorageError(RuntimeError):
    pass


class ConstraintViolationError(StorageError):
    def __init__(self, table: str, constraint: str, message: str) -> None:
        super().__init__(message)
        self.table = table
        self.constraint = constraint
