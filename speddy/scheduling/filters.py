"""
Role-based session visibility and grid filters.

Who sees a session depends on the viewer's role: specialist roles also see
sessions assigned to them as specialist, SEAs see sessions assigned to them
as SEA, everybody else sees only the sessions they provide.
"""

from typing import Iterable, Optional

from ..domain.entities import DeliveredBy, ScheduleSession, SessionFilter

SPECIALIST_SOURCE_ROLES = frozenset({"resource", "speech", "ot", "counseling", "specialist"})

ROLE_DISPLAY_NAMES = {
    "resource": "Resource Specialist",
    "speech": "Speech Therapist",
    "ot": "Occupational Therapist",
    "counseling": "Counselor",
    "specialist": "Program Specialist",
    "sea": "Special Education Assistant",
}

_ROLE_TO_DELIVERED_BY = {
    "provider": DeliveredBy.PROVIDER,
    "sea": DeliveredBy.SEA,
    "specialist": DeliveredBy.SPECIALIST,
}


def normalize_role(role: Optional[str]) -> str:
    return (role or "").strip().lower()


def is_specialist_source_role(role: Optional[str]) -> bool:
    return normalize_role(role) in SPECIALIST_SOURCE_ROLES


def role_display_name(role: Optional[str]) -> str:
    return ROLE_DISPLAY_NAMES.get(normalize_role(role), "Provider")


def delivered_by_for_role(role: Optional[str]) -> Optional[DeliveredBy]:
    """Map a profile role to the delivered_by value it may group."""
    return _ROLE_TO_DELIVERED_BY.get(normalize_role(role))


def visible_to(session: ScheduleSession, user_id: str, role: Optional[str]) -> bool:
    """Whether a user with ``role`` sees ``session`` on their schedule."""
    if session.provider_id == user_id:
        return True
    if is_specialist_source_role(role):
        return session.assigned_to_specialist_id == user_id
    if normalize_role(role) == "sea":
        return session.assigned_to_sea_id == user_id
    return False


def visibility_clause(role: Optional[str], param: str = "$1") -> str:
    """
    SQL predicate equivalent to visible_to.

    ``param`` is the placeholder bound to the user id.
    """
    if is_specialist_source_role(role):
        return f"(provider_id = {param} OR assigned_to_specialist_id = {param})"
    if normalize_role(role) == "sea":
        return f"(provider_id = {param} OR assigned_to_sea_id = {param})"
    return f"provider_id = {param}"


def has_session_access(session: ScheduleSession, user_id: str) -> bool:
    """Provider, assigned specialist or assigned SEA may act on a session."""
    return user_id in (
        session.provider_id,
        session.assigned_to_specialist_id,
        session.assigned_to_sea_id,
    )


def filter_sessions(
    sessions: Iterable[ScheduleSession],
    session_filter: SessionFilter,
    current_user_id: Optional[str] = None,
) -> list[ScheduleSession]:
    """Apply a grid filter."""
    if session_filter == SessionFilter.MINE:
        return [s for s in sessions if s.delivered_by == DeliveredBy.PROVIDER.value]
    if session_filter == SessionFilter.SEA:
        return [s for s in sessions if s.delivered_by == DeliveredBy.SEA.value]
    if session_filter == SessionFilter.SPECIALIST:
        return [s for s in sessions if s.delivered_by == DeliveredBy.SPECIALIST.value]
    if session_filter == SessionFilter.ASSIGNED:
        return [s for s in sessions if s.assigned_to_specialist_id == current_user_id]
    return list(sessions)
