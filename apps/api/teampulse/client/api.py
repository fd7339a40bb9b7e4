from __future__ import annotations

from typing import Any

import httpx


class ApiError(RuntimeError):
  def __init__(self, *, status_code: int, detail: Any) -> None:
    super().__init__(f"{status_code}: {detail}")
    self.status_code = status_code
    self.detail = detail


async def _request_json(client: httpx.AsyncClient, method: str, path: str, **kwargs: Any) -> Any:
  r = await client.request(method, path, **kwargs)
  if r.status_code >= 400:
    try:
      payload = r.json()
      detail = payload.get("detail", payload) if isinstance(payload, dict) else payload
    except ValueError:
      detail = (r.text or "")[:800]
    raise ApiError(status_code=r.status_code, detail=detail)
  if r.status_code == 204:
    return None
  return r.json()


class TaskApiClient:
  """Thin async client for the task endpoints.

  `timeout` is the caller-side bound on every request; the server applies
  none of its own.
  """

  def __init__(
    self,
    base_url: str,
    token: str,
    *,
    timeout: float = 15.0,
    transport: httpx.AsyncBaseTransport | None = None,
  ) -> None:
    headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
    self._client = httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout, transport=transport)

  async def __aenter__(self) -> TaskApiClient:
    return self

  async def __aexit__(self, *exc: object) -> None:
    await self.aclose()

  async def aclose(self) -> None:
    await self._client.aclose()

  async def list_tasks(
    self,
    *,
    status: str | None = None,
    assignee: str | None = None,
    priority: str | None = None,
  ) -> list[dict[str, Any]]:
    params = {k: v for k, v in {"status": status, "assignee": assignee, "priority": priority}.items() if v}
    return await _request_json(self._client, "GET", "/tasks", params=params)

  async def get_task(self, task_id: str) -> dict[str, Any]:
    return await _request_json(self._client, "GET", f"/tasks/{task_id}")

  async def create_task(self, **fields: Any) -> dict[str, Any]:
    return await _request_json(self._client, "POST", "/tasks", json=fields)

  async def update_task(self, task_id: str, **fields: Any) -> dict[str, Any]:
    return await _request_json(self._client, "PUT", f"/tasks/{task_id}", json=fields)

  async def move_task(self, task_id: str, status: str) -> dict[str, Any]:
    return await _request_json(self._client, "PUT", f"/tasks/{task_id}/move", json={"status": status})

  async def delete_task(self, task_id: str) -> dict[str, Any]:
    return await _request_json(self._client, "DELETE", f"/tasks/{task_id}")
