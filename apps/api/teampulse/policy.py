"""Role-based permission rules for task operations.

Everything here is pure: no database, no clock. Routers and the board
service call `ensure_allowed` before any write so the rule table below is
the only place assignment privileges are defined.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from teampulse.errors import ForbiddenError


class Role(str, Enum):
  STUDENT = "student"
  MENTOR = "mentor"
  COACH = "coach"


class TaskOperation(str, Enum):
  ASSIGN = "assign"
  MOVE = "move"
  UPDATE = "update"
  DELETE = "delete"
  ATTACH = "attach"


ASSIGNABLE_ROLES: dict[Role, frozenset[Role]] = {
  Role.STUDENT: frozenset({Role.STUDENT}),
  Role.MENTOR: frozenset({Role.STUDENT, Role.MENTOR}),
  Role.COACH: frozenset({Role.STUDENT, Role.MENTOR, Role.COACH}),
}

_DENIAL_MESSAGES: dict[Role, str] = {
  Role.STUDENT: "Students can only assign tasks to fellow students",
  Role.MENTOR: "Mentors can only assign tasks to students and fellow mentors",
}


@dataclass(frozen=True)
class Identity:
  """Who is acting. Resolved once per request or websocket connection."""

  user_id: str
  role: Role
  name: str = ""


@dataclass(frozen=True)
class Decision:
  allowed: bool
  reason: str | None = None


ALLOW = Decision(True)


def _role(value: Role | str) -> Role:
  try:
    return Role(value)
  except ValueError:
    raise ValueError(f"Unknown role: {value!r}") from None


def assignable_roles(actor_role: Role | str) -> frozenset[Role]:
  return ASSIGNABLE_ROLES[_role(actor_role)]


def evaluate(actor_role: Role | str, operation: TaskOperation | str, target_role: Role | str | None = None) -> Decision:
  actor = _role(actor_role)
  op = TaskOperation(operation)
  if op is not TaskOperation.ASSIGN:
    # Status moves, field edits, deletes and attachments are open to any identity.
    return ALLOW
  if target_role is None:
    raise ValueError("target_role is required for assign")
  target = _role(target_role)
  if target in ASSIGNABLE_ROLES[actor]:
    return ALLOW
  return Decision(False, _DENIAL_MESSAGES.get(actor, f"{actor.value} cannot assign tasks to {target.value}"))


def ensure_allowed(actor_role: Role | str, operation: TaskOperation | str, target_role: Role | str | None = None) -> None:
  decision = evaluate(actor_role, operation, target_role)
  if not decision.allowed:
    raise ForbiddenError(
      decision.reason or "Not allowed",
      actor_role=_role(actor_role).value,
      target_role=_role(target_role).value if target_role is not None else None,
    )
