from __future__ import annotations

from datetime import datetime
from http import HTTPStatus
from pathlib import Path
from typing import Any, Callable

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from .booking import parse_iso_datetime
from .config import ClubSettings, load_settings
from .errors import ClubError, ForbiddenError, UnauthorizedError, ValidationError
from .models import TEAM_FIELDS, ReservationRecord, TeamView
from .reservations import ReservationManager
from .roster import SeatRequest
from .teams import TeamManager, session_specs_from_payload
from .yaml_store import ClubYamlStore

TRUE_VALUES = {"1", "true", "yes", "on"}


def create_app(
    data_dir: str | Path | None = None,
    now_provider: Callable[[], datetime] | None = None,
    settings: ClubSettings | None = None,
) -> Flask:
    if settings is None:
        settings = ClubSettings(data_dir=Path(data_dir)) if data_dir is not None else load_settings()

    app = Flask(__name__)
    store = ClubYamlStore(settings.data_dir)
    reservations = ReservationManager(store)
    teams = TeamManager(store)
    clock: Callable[[], datetime] = now_provider or datetime.now
    app.config["CLUB_STORE"] = store

    def _caller() -> tuple[int, bool]:
        raw_user = str(request.headers.get(settings.user_header, "")).strip()
        if not raw_user:
            raise UnauthorizedError("Caller identity is missing.")
        try:
            user_id = int(raw_user)
        except ValueError as error:
            raise UnauthorizedError("Caller identity is malformed.") from error
        is_admin = str(request.headers.get(settings.admin_header, "")).strip().lower() in TRUE_VALUES
        return user_id, is_admin

    def _optional_caller_id() -> int | None:
        if not str(request.headers.get(settings.user_header, "")).strip():
            return None
        return _caller()[0]

    def _serialize_reservation(record: ReservationRecord, caller_id: int | None = None) -> dict[str, Any]:
        payload = record.to_dict()
        payload["is_mine"] = caller_id is not None and caller_id in record.user_ids
        return payload

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,PATCH,DELETE,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = f"Content-Type,{settings.user_header},{settings.admin_header}"
        return response

    @app.errorhandler(ClubError)
    def handle_club_error(error: ClubError) -> Any:
        return jsonify({"ok": False, "error": error.to_detail(request.path)}), int(error.status)

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException) -> Any:
        status = error.code or 500
        detail = {
            "type": type(error).__name__,
            "title": HTTPStatus(status).name,
            "status": status,
            "detail": error.description,
            "instance": request.path,
        }
        return jsonify({"ok": False, "error": detail}), status

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception) -> Any:
        detail = {
            "type": type(error).__name__,
            "title": HTTPStatus.INTERNAL_SERVER_ERROR.name,
            "status": 500,
            "detail": "Internal server error",
            "instance": request.path,
        }
        return jsonify({"ok": False, "error": detail}), 500

    @app.post("/api/reservations")
    def create_reservation() -> Any:
        _caller()
        payload = _json_body()
        created = reservations.create(
            resource_id=_parse_int(payload.get("resource_id"), "resource_id"),
            title=_parse_text(payload.get("title"), "title"),
            start=_parse_datetime(payload.get("start"), "start"),
            end=_parse_datetime(payload.get("end"), "end"),
            user_ids=_parse_int_list(payload.get("user_ids"), "user_ids"),
            now=clock(),
        )
        return jsonify({"ok": True, "reservation": _serialize_reservation(created)}), 201

    @app.get("/api/reservations")
    def list_reservations() -> Any:
        args = request.args
        records = reservations.list(
            resource_category=args.get("category") or None,
            resource_id=_parse_int(args["resource_id"], "resource_id") if args.get("resource_id") else None,
            window_from=_parse_datetime(args["from"], "from") if args.get("from") else None,
            window_to=_parse_datetime(args["to"], "to") if args.get("to") else None,
            resource_type=args.get("type") or None,
        )
        caller_id = _optional_caller_id()
        return jsonify({"ok": True, "reservations": [_serialize_reservation(record, caller_id) for record in records]})

    @app.get("/api/reservations/me")
    def list_my_reservations() -> Any:
        caller_id, _ = _caller()
        records = reservations.list_for_user(caller_id)
        return jsonify({"ok": True, "reservations": [_serialize_reservation(record, caller_id) for record in records]})

    @app.get("/api/reservations/<int:reservation_id>")
    def get_reservation(reservation_id: int) -> Any:
        record = reservations.get(reservation_id)
        return jsonify({"ok": True, "reservation": _serialize_reservation(record, _optional_caller_id())})

    @app.patch("/api/reservations/<int:reservation_id>")
    def update_reservation(reservation_id: int) -> Any:
        caller_id, is_admin = _caller()
        payload = _json_body()
        changes: dict[str, Any] = {}
        if "title" in payload:
            changes["title"] = _parse_text(payload["title"], "title")
        if "resource_id" in payload:
            changes["resource_id"] = _parse_int(payload["resource_id"], "resource_id")
        for name in ("start", "end"):
            if name in payload:
                changes[name] = _parse_datetime(payload[name], name)
        if "user_ids" in payload:
            changes["user_ids"] = _parse_int_list(payload["user_ids"], "user_ids")

        updated = reservations.update(reservation_id, changes, caller_id, is_admin, now=clock())
        return jsonify({"ok": True, "reservation": _serialize_reservation(updated, caller_id)})

    @app.delete("/api/reservations/<int:reservation_id>")
    def delete_reservation(reservation_id: int) -> Any:
        caller_id, is_admin = _caller()
        deleted = reservations.remove(reservation_id, caller_id, is_admin)
        return jsonify({"ok": True, "reservation": _serialize_reservation(deleted, caller_id)})

    def _create_team(leader_id: int, payload: dict[str, Any]) -> Any:
        view = teams.create(
            performance_id=_parse_int(payload.get("performance_id"), "performance_id"),
            leader_id=leader_id,
            fields=_team_fields(payload),
            sessions=_parse_sessions(payload.get("sessions") or []),
            now=clock(),
        )
        return jsonify({"ok": True, "team": view.to_dict()}), 201

    @app.post("/api/teams")
    def create_team() -> Any:
        caller_id, _ = _caller()
        return _create_team(caller_id, _json_body())

    @app.post("/api/teams/admin")
    def create_team_as_admin() -> Any:
        _, is_admin = _caller()
        if not is_admin:
            raise ForbiddenError("Only admins can create a team for another leader.")
        payload = _json_body()
        return _create_team(_parse_int(payload.get("leader_id"), "leader_id"), payload)

    @app.get("/api/teams")
    def list_teams() -> Any:
        raw_performance = request.args.get("performance_id")
        views = teams.list(_parse_int(raw_performance, "performance_id") if raw_performance else None)
        return jsonify({"ok": True, "teams": [view.to_dict() for view in views]})

    @app.get("/api/teams/<int:team_id>")
    def get_team(team_id: int) -> Any:
        return _team_response(teams.get(team_id))

    @app.patch("/api/teams/<int:team_id>")
    def update_team(team_id: int) -> Any:
        caller_id, is_admin = _caller()
        payload = _json_body()
        sessions = _parse_sessions(payload["sessions"]) if "sessions" in payload else None
        view = teams.update(team_id, _team_fields(payload), caller_id, is_admin, sessions=sessions, now=clock())
        return _team_response(view)

    @app.delete("/api/teams/<int:team_id>")
    def delete_team(team_id: int) -> Any:
        caller_id, is_admin = _caller()
        deleted = teams.remove(team_id, caller_id, is_admin)
        return jsonify({"ok": True, "team": deleted.to_dict()})

    @app.post("/api/teams/<int:team_id>/apply")
    def apply_to_team(team_id: int) -> Any:
        caller_id, _ = _caller()
        applications = _json_body().get("applications")
        if not isinstance(applications, list):
            raise ValidationError("applications must be a list of {session_id, index} objects.")
        requests = []
        for item in applications:
            if not isinstance(item, dict):
                raise ValidationError("applications must be a list of {session_id, index} objects.")
            requests.append(
                SeatRequest(
                    session_id=_parse_int(item.get("session_id"), "session_id"),
                    index=_parse_int(item.get("index"), "index"),
                )
            )
        return _team_response(teams.apply(team_id, caller_id, requests))

    @app.delete("/api/teams/<int:team_id>/leave")
    def leave_team(team_id: int) -> Any:
        caller_id, _ = _caller()
        return _team_response(teams.leave(team_id, caller_id))

    return app


def _team_response(view: TeamView) -> Any:
    return jsonify({"ok": True, "team": view.to_dict()})


def _json_body() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.")
    return payload


def _parse_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer.")
    try:
        return int(value)
    except (TypeError, ValueError) as error:
        raise ValidationError(f"{name} must be an integer.") from error


def _parse_int_list(value: Any, name: str) -> list[int]:
    if not isinstance(value, list):
        raise ValidationError(f"{name} must be a list of integers.")
    return [_parse_int(item, name) for item in value]


def _parse_text(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} must be a non-empty string.")
    return value.strip()


def _parse_datetime(value: Any, name: str) -> datetime:
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be an ISO 8601 datetime.")
    try:
        return parse_iso_datetime(value)
    except ValueError as error:
        raise ValidationError(f"{name} must be an ISO 8601 datetime.") from error


def _team_fields(payload: dict[str, Any]) -> dict[str, Any]:
    return {name: payload[name] for name in TEAM_FIELDS if name in payload}


def _parse_sessions(value: Any) -> list[Any]:
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise ValidationError("sessions must be a list of {session_id, capacity, members} objects.")
    try:
        return session_specs_from_payload(value)
    except (KeyError, TypeError, ValueError) as error:
        raise ValidationError("sessions must be a list of {session_id, capacity, members} objects.") from error


if __name__ == "__main__":
    settings = load_settings()
    app = create_app(settings=settings)
    app.run(host=settings.host, port=settings.port, debug=False, threaded=True)
