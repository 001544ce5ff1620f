"""
Transition planning - the verification state machine as pure functions.

Each planner takes the current record (as last read) plus the trigger's
input and returns the Transition to perform, or raises the domain error
that rejects it. Planners never touch storage or the platform; the
VerificationService executes the plan with a guarded store call so a
concurrent writer that moved the record on makes the call fail instead
of being overwritten.

    PENDING ----complete / manual verify----> VERIFIED
    VERIFIED ---restrict--------------------> RESTRICTED
    RESTRICTED -unrestrict------------------> VERIFIED
    any --------reset / purge---------------> (deleted)
"""

from dataclasses import dataclass

from .exceptions import ConflictError, ValidationError
from .ports import IdentityRecord, MemberState
from .roles import RoleMap


@dataclass(frozen=True)
class Transition:
    """
    Planned effect of one trigger.

    next_state is None when the record is to be deleted, and equals the
    current state when only external roles change (re-join).
    """

    next_state: MemberState | None
    team_role: str
    grant: tuple[str, ...] = ()
    revoke: tuple[str, ...] = ()


def resolve_team(team: str | None, roles: RoleMap) -> str:
    """
    Validate a requested team against the mapping.

    Returns "" when team selection is disabled.
    """
    if not roles.team_selection:
        return ""
    if not team:
        raise ValidationError("A team is required.")
    roles.team_role_id(team)
    return team


def plan_completion(record: IdentityRecord, team: str | None, roles: RoleMap) -> Transition:
    """Web completion: PENDING -> VERIFIED."""
    if record.state is MemberState.VERIFIED:
        raise ConflictError("User already verified")
    if record.state is MemberState.RESTRICTED:
        raise ConflictError("Access restricted; contact a moderator")
    team_role = resolve_team(team, roles)
    return Transition(
        next_state=MemberState.VERIFIED,
        team_role=team_role,
        grant=roles.member_role_ids(team_role),
    )


def plan_manual_verify(
    record: IdentityRecord | None, team: str | None, roles: RoleMap
) -> Transition:
    """Moderator verify: create-or-replace directly as VERIFIED."""
    if record is not None and record.state is MemberState.VERIFIED:
        raise ConflictError("Member is already verified.")
    team_role = resolve_team(team, roles)
    return Transition(
        next_state=MemberState.VERIFIED,
        team_role=team_role,
        grant=roles.member_role_ids(team_role),
    )


def plan_change_team(record: IdentityRecord, team: str, roles: RoleMap) -> Transition:
    """Moderator change-team: VERIFIED stays VERIFIED with a new team."""
    if not roles.team_selection:
        raise ValidationError("Team selection is disabled.")
    if record.state is not MemberState.VERIFIED:
        raise ConflictError("Member is not verified.")
    roles.team_role_id(team)
    if team == record.team_role:
        raise ConflictError(f"Member is already on the {team} team.")
    revoke = (roles.teams[record.team_role],) if record.team_role in roles.teams else ()
    return Transition(
        next_state=MemberState.VERIFIED,
        team_role=team,
        grant=(roles.teams[team],),
        revoke=revoke,
    )


def plan_restrict(record: IdentityRecord, roles: RoleMap) -> Transition:
    """Moderator restrict: VERIFIED -> RESTRICTED, roles removed."""
    if record.state is MemberState.RESTRICTED:
        raise ConflictError("Member is already restricted.")
    if record.state is not MemberState.VERIFIED:
        raise ConflictError("Member is not verified.")
    return Transition(
        next_state=MemberState.RESTRICTED,
        team_role=record.team_role,
        revoke=roles.member_role_ids(record.team_role),
    )


def plan_unrestrict(record: IdentityRecord, roles: RoleMap) -> Transition:
    """Moderator unrestrict: RESTRICTED -> VERIFIED, same team, roles back."""
    if record.state is not MemberState.RESTRICTED:
        raise ConflictError("Member is not restricted.")
    return Transition(
        next_state=MemberState.VERIFIED,
        team_role=record.team_role,
        grant=roles.member_role_ids(record.team_role),
    )


def plan_removal(record: IdentityRecord, roles: RoleMap) -> Transition:
    """Reset / purge: any state -> deleted, roles revoked if they were held."""
    revoke: tuple[str, ...] = ()
    if record.state is MemberState.VERIFIED:
        revoke = roles.member_role_ids(record.team_role)
    return Transition(next_state=None, team_role=record.team_role, revoke=revoke)


def plan_rejoin(record: IdentityRecord, roles: RoleMap) -> Transition:
    """Re-join while VERIFIED: re-grant the recorded roles, no state change."""
    grant: tuple[str, ...] = ()
    if record.state is MemberState.VERIFIED:
        grant = roles.member_role_ids(record.team_role)
    return Transition(next_state=record.state, team_role=record.team_role, grant=grant)
