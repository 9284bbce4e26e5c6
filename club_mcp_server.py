from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP

from club_manager import ClubYamlStore, ReservationManager, TeamManager, load_settings, parse_iso_datetime

mcp = FastMCP(
    "Club Manager MCP Server",
    instructions="Expose reservation and team roster data from the club_manager project.",
    json_response=True,
)

SETTINGS = load_settings()
STORE = ClubYamlStore(SETTINGS.data_dir)


@mcp.tool()
def list_reservations(
    category: str | None = None,
    resource_id: int | None = None,
    from_iso: str | None = None,
    to_iso: str | None = None,
    resource_type: str | None = None,
) -> list[dict[str, Any]]:
    """Return reservations, optionally filtered by resource category or type (room/item), resource and time window.

    Offsets in ``from_iso``/``to_iso`` are honoured; times without one are read as UTC.
    """
    records = ReservationManager(STORE).list(
        resource_category=category,
        resource_id=resource_id,
        window_from=parse_iso_datetime(from_iso) if from_iso else None,
        window_to=parse_iso_datetime(to_iso) if to_iso else None,
        resource_type=resource_type,
    )
    return [record.to_dict() for record in records]


@mcp.tool()
def list_my_reservations(user_id: int) -> list[dict[str, Any]]:
    """Return reservations the given user participates in, newest first."""
    return [record.to_dict() for record in ReservationManager(STORE).list_for_user(user_id)]


@mcp.tool()
def list_teams(performance_id: int | None = None) -> list[dict[str, Any]]:
    """Return teams with their sessions and seated members."""
    return [view.to_dict() for view in TeamManager(STORE).list(performance_id)]


@mcp.tool()
def get_team(team_id: int) -> dict[str, Any]:
    """Return one team with its sessions and seated members."""
    return TeamManager(STORE).get(team_id).to_dict()


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
