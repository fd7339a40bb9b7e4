from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from time import monotonic


@dataclass
class RequestSample:
  ts: datetime
  status_code: int
  latency_ms: float


class RuntimeMetrics:
  """Rolling request latency/error windows plus task-operation outcome counts."""

  def __init__(self, *, window: timedelta = timedelta(hours=24)) -> None:
    self._window = window
    self._started_monotonic = monotonic()
    self._started_at = datetime.now(timezone.utc)
    self._samples: deque[RequestSample] = deque()
    self._outcomes: Counter[str] = Counter()
    self._ws_open = 0
    self._lock = Lock()

  @property
  def started_at(self) -> datetime:
    return self._started_at

  def uptime_seconds(self) -> int:
    return max(0, int(monotonic() - self._started_monotonic))

  def observe_request(self, status_code: int, latency_ms: float) -> None:
    now = datetime.now(timezone.utc)
    with self._lock:
      self._samples.append(RequestSample(ts=now, status_code=status_code, latency_ms=latency_ms))
      self._prune_locked(now)

  def observe_outcome(self, outcome: str) -> None:
    # e.g. "forbidden", "not_found", "validation", "store_unavailable"
    with self._lock:
      self._outcomes[outcome] += 1

  def ws_opened(self) -> None:
    with self._lock:
      self._ws_open += 1

  def ws_closed(self) -> None:
    with self._lock:
      self._ws_open = max(0, self._ws_open - 1)

  def _prune_locked(self, now: datetime) -> None:
    cutoff = now - self._window
    while self._samples and self._samples[0].ts < cutoff:
      self._samples.popleft()

  def snapshot(self) -> dict:
    now = datetime.now(timezone.utc)
    with self._lock:
      self._prune_locked(now)
      samples = list(self._samples)
      outcomes = dict(self._outcomes)
      ws_open = self._ws_open

    recent_cutoff = now - timedelta(minutes=15)
    recent = [s for s in samples if s.ts >= recent_cutoff]
    errors_15 = sum(1 for s in recent if s.status_code >= 500)
    errors_window = sum(1 for s in samples if s.status_code >= 500)

    p95_ms = 0.0
    if samples:
      latencies = sorted(s.latency_ms for s in samples)
      p95_ms = latencies[max(0, int(len(latencies) * 0.95) - 1)]

    return {
      "startedAt": self._started_at,
      "uptimeSeconds": self.uptime_seconds(),
      "p95LatencyMs": round(p95_ms, 2),
      "requestCount15m": len(recent),
      "requestCountWindow": len(samples),
      "errorCount15m": errors_15,
      "errorCountWindow": errors_window,
      "errorRate15m": round((errors_15 / len(recent)) * 100, 2) if recent else 0.0,
      "outcomes": outcomes,
      "websocketsOpen": ws_open,
    }
