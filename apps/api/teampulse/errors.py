from __future__ import annotations


class TeamPulseError(Exception):
  pass


class ValidationError(TeamPulseError):
  """Malformed task input. `field` names the offending attribute."""

  def __init__(self, field: str, message: str) -> None:
    super().__init__(f"{field}: {message}")
    self.field = field
    self.message = message


class NotFoundError(TeamPulseError):
  def __init__(self, entity: str, entity_id: str) -> None:
    super().__init__(f"{entity} not found")
    self.entity = entity
    self.entity_id = entity_id


class ForbiddenError(TeamPulseError):
  """Assignment rejected by the policy engine."""

  def __init__(self, message: str, *, actor_role: str, target_role: str | None = None) -> None:
    super().__init__(message)
    self.message = message
    self.actor_role = actor_role
    self.target_role = target_role


class StoreUnavailableError(TeamPulseError):
  pass
