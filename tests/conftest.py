"""Shared fakes for the Warplet API."""

from __future__ import annotations

import base64
import json
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
import requests

import warplet_scan as ws


PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"
PNG_B64 = base64.b64encode(PNG_BYTES).decode("ascii")


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: Optional[str] = None) -> None:
        self.status_code = status_code
        if text is None:
            text = "" if payload is None else json.dumps(payload)
        self.text = text
        self.content = text.encode("utf-8")

    def json(self) -> Any:
        return json.loads(self.text)


class FakeSession:
    """Stands in for requests.Session; answers from per-FID handlers.

    ``generate`` / ``sign`` map an FID to a callable returning a FakeResponse
    (or raising). FIDs without a handler get a 200 with a minimal payload.
    """

    def __init__(
        self,
        generate: Optional[Dict[str, Callable[[], FakeResponse]]] = None,
        sign: Optional[Dict[str, Callable[[], FakeResponse]]] = None,
        delay: float = 0.0,
    ) -> None:
        self.generate = generate or {}
        self.sign = sign or {}
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def post(self, url: str, json: Any = None, timeout: Any = None) -> FakeResponse:
        with self._lock:
            self.calls.append({"url": url, "json": json, "timeout": timeout})
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            fid = url.rstrip("/").rsplit("/", 1)[-1]
            if "/generateSignature/" in url:
                handler = self.sign.get(fid)
                return handler() if handler else FakeResponse(200, {"fid": fid, "signature": "0xsig"})
            handler = self.generate.get(fid)
            return handler() if handler else FakeResponse(200, {"fid": fid, "attributes": []})
        finally:
            with self._lock:
                self.in_flight -= 1

    def urls(self, marker: str) -> List[str]:
        return [c["url"] for c in self.calls if marker in c["url"]]


def sequence(*items: Any) -> Callable[[], FakeResponse]:
    """Handler that replays ``items`` in order, repeating the last one.

    Exception instances are raised instead of returned.
    """
    queue = list(items)

    def handler() -> FakeResponse:
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        return item

    return handler


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def no_sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., ws.ScanConfig]:
    def factory(**overrides: Any) -> ws.ScanConfig:
        values: Dict[str, Any] = {
            "fids_file": tmp_path / "fids.txt",
            "out_dir": tmp_path / "out",
            "api_url": "https://api.test",
        }
        values.update(overrides)
        return ws.ScanConfig(**values)

    return factory


@pytest.fixture
def connection_error() -> requests.ConnectionError:
    return requests.ConnectionError("connection refused")
