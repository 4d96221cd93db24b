"""Minimal JSON-RPC client for the job API of a Lily node."""

from __future__ import annotations

import itertools
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, ContextManager, Dict, Iterator, List, Optional

import httpx

from .errors import LilyAPIError, LilyConnectionError


@dataclass
class WalkConfig:
    """Parameters of a ``LilyWalk`` job request."""

    name: str
    tasks: List[str]
    from_height: int
    to_height: int
    storage: str
    window: int = 0
    restart_delay: int = 0
    restart_on_completion: bool = False
    restart_on_failure: bool = False

    def to_payload(self) -> Dict[str, Any]:
        return {
            "Name": self.name,
            "Tasks": list(self.tasks),
            "Window": self.window,
            "From": self.from_height,
            "To": self.to_height,
            "RestartDelay": self.restart_delay,
            "RestartOnCompletion": self.restart_on_completion,
            "RestartOnFailure": self.restart_on_failure,
            "Storage": self.storage,
        }


@dataclass
class JobSubmitResult:
    id: int
    name: str

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "JobSubmitResult":
        return cls(id=int(payload["ID"]), name=str(payload.get("Name") or ""))


@dataclass
class JobListResult:
    """Status of a job as reported by ``LilyJobList``."""

    id: int
    name: str
    type: str
    running: bool
    tasks: List[str] = field(default_factory=list)
    params: Dict[str, str] = field(default_factory=dict)
    error: str = ""
    restart_on_failure: bool = False
    restart_on_completion: bool = False
    restart_delay: int = 0
    started_at: Optional[str] = None
    ended_at: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "JobListResult":
        return cls(
            id=int(payload["ID"]),
            name=str(payload.get("Name") or ""),
            type=str(payload.get("Type") or ""),
            running=bool(payload.get("Running")),
            tasks=[str(task) for task in payload.get("Tasks") or []],
            params={str(k): str(v) for k, v in (payload.get("Params") or {}).items()},
            error=str(payload.get("Error") or ""),
            restart_on_failure=bool(payload.get("RestartOnFailure")),
            restart_on_completion=bool(payload.get("RestartOnCompletion")),
            restart_delay=int(payload.get("RestartDelay") or 0),
            started_at=payload.get("StartedAt"),
            ended_at=payload.get("EndedAt"),
        )


class LilyClient:
    """Wraps one HTTP connection to the Lily JSON-RPC endpoint."""

    def __init__(
        self,
        api_url: str,
        token: str | None = None,
        *,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_url = api_url
        self._ids = itertools.count(1)
        self._client = httpx.Client(
            timeout=timeout,
            headers=self._http_headers(token),
            transport=transport,
        )

    @staticmethod
    def _http_headers(token: str | None) -> dict[str, str]:
        headers: dict[str, str] = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "LilyClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _call(self, method: str, *params: Any) -> Any:
        request = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": f"Filecoin.{method}",
            "params": list(params),
        }
        try:
            response = self._client.post(self.api_url, json=request)
            response.raise_for_status()
            body = response.json()
        except httpx.TransportError as exc:
            raise LilyConnectionError(f"{method}: {exc}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise LilyAPIError(f"{method}: {exc}") from exc

        if not isinstance(body, dict):
            raise LilyAPIError(f"{method}: unexpected response payload")
        error = body.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise LilyAPIError(f"{method}: {message}")
        return body.get("result")

    def job_list(self) -> List[JobListResult]:
        result = self._call("LilyJobList")
        if result is not None and not isinstance(result, list):
            raise LilyAPIError("LilyJobList: unexpected response payload")
        try:
            return [JobListResult.from_payload(item) for item in result or []]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise LilyAPIError(f"LilyJobList: malformed job entry: {exc!r}") from exc

    def walk(self, config: WalkConfig) -> JobSubmitResult:
        result = self._call("LilyWalk", config.to_payload())
        if not isinstance(result, dict):
            raise LilyAPIError("LilyWalk: unexpected response payload")
        try:
            return JobSubmitResult.from_payload(result)
        except (KeyError, TypeError, ValueError) as exc:
            raise LilyAPIError(f"LilyWalk: malformed result: {exc!r}") from exc


ApiFactory = Callable[[], ContextManager[LilyClient]]


@contextmanager
def open_api(
    api_url: str,
    token: str | None = None,
    *,
    timeout: float = 30.0,
    transport: httpx.BaseTransport | None = None,
) -> Iterator[LilyClient]:
    """Open a client for the duration of one call and always release it."""

    client = LilyClient(api_url, token, timeout=timeout, transport=transport)
    try:
        yield client
    finally:
        client.close()


def api_factory(
    api_url: str,
    token: str | None = None,
    *,
    timeout: float = 30.0,
    transport: httpx.BaseTransport | None = None,
) -> ApiFactory:
    """Bind connection settings so callers can open fresh clients on demand."""

    def _open() -> ContextManager[LilyClient]:
        return open_api(api_url, token, timeout=timeout, transport=transport)

    return _open


__all__ = [
    "ApiFactory",
    "JobListResult",
    "JobSubmitResult",
    "LilyClient",
    "WalkConfig",
    "api_factory",
    "open_api",
]
