from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import httpx

DEFAULT_FETCH_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True, slots=True)
class FetchResponse:
    """Plain snapshot of an HTTP response handed to sandboxed code.

    Example:
        ```python
        response = FetchResponse(status=200, headers={}, text='{"a": 1}', url="https://example.org")
        ```
    """

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    text: str = ""
    url: str = ""

    @property
    def ok(self) -> bool:
        """Return True for 2xx statuses.

        Example:
            ```python
            assert FetchResponse(status=204).ok
            ```
        """
        return 200 <= self.status < 300

    def json(self) -> Any:
        """Decode the body as JSON.

        Example:
            ```python
            data = FetchResponse(status=200, text="[1, 2]").json()
            ```
        """
        return json.loads(self.text)


def make_fetch(client_factory: Callable[[], httpx.Client] | None = None) -> Callable[..., FetchResponse]:
    """Build the `fetch` binding exposed when the host grants network access.

    Example:
        ```python
        fetch = make_fetch()
        response = fetch("https://example.org")
        ```
    """
    factory = client_factory or (lambda: httpx.Client(timeout=DEFAULT_FETCH_TIMEOUT_SECONDS))

    def fetch(
        url: str,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        body: str | bytes | None = None,
    ) -> FetchResponse:
        """Perform one HTTP request and return a `FetchResponse`.

        Example:
            ```python
            response = fetch("https://example.org", method="POST", body="{}")
            ```
        """
        with factory() as client:
            response = client.request(
                method.upper(),
                str(url),
                headers=dict(headers or {}),
                content=body,
            )
        return FetchResponse(
            status=response.status_code,
            headers=dict(response.headers),
            text=response.text,
            url=str(response.url),
        )

    return fetch


def sleep(seconds: float) -> None:
    """Block the sandboxed code for `seconds`; negative values are ignored.

    Example:
        ```python
        sleep(0.05)
        ```
    """
    time.sleep(max(0.0, float(seconds)))


def host_bindings(*, network: bool, timers: bool) -> dict[str, Any]:
    """Return the host-bound bindings the policy grants.

    Example:
        ```python
        extra = host_bindings(network=False, timers=True)
        ```
    """
    bindings: dict[str, Any] = {}
    if network:
        bindings["fetch"] = make_fetch()
    if timers:
        bindings["sleep"] = sleep
    return bindings
