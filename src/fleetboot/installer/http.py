# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/installer/http.py

from __future__ import annotations

import logging
import time
from typing import BinaryIO, Callable, Optional

import requests

from ..errors import ConnectionFailedError, FleetbootError, NotFoundError

log = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
_ANIM = "/-\\|"


def human_bytes(b: int) -> str:
    unit = 1024
    if b < unit:
        return f"{b} B"
    div, exp = unit, 0
    n = b // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{b / div:.1f} {'KMGTPE'[exp]}B"


class ProgressWriter:
    """
    Wraps a writable file and logs bytes transferred at most every `interval` seconds.
    """

    def __init__(self, fileobj: BinaryIO, *, interval: float = 0.1, clock: Callable[[], float] = time.monotonic):
        self.fileobj = fileobj
        self.written = 0
        self.interval = interval
        self._clock = clock
        self._last: Optional[float] = None
        self._anim = 0

    def write(self, data: bytes) -> int:
        n = self.fileobj.write(data)
        n = len(data) if n is None else n
        self.written += n

        now = self._clock()
        if self._last is None or now - self._last >= self.interval:
            self._anim = (self._anim + 1) % len(_ANIM)
            log.info("Downloading... %s transferred %s", human_bytes(self.written), _ANIM[self._anim])
            self._last = now
        return n


class HttpClient:
    def __init__(self, session: Optional[requests.Session] = None, *, timeout: float = 30.0):
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, url: str, **kwargs) -> requests.Response:
        try:
            r = self.session.get(url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise ConnectionFailedError(f"GET {url} failed: {e}") from e

        if r.status_code == 404:
            r.close()
            raise NotFoundError(f"GET {url} returned 404")
        try:
            r.raise_for_status()
        except requests.HTTPError as e:
            r.close()
            raise FleetbootError(f"GET {url} failed: {e}") from e
        return r

    def get(self, url: str) -> bytes:
        with self._request(url) as r:
            return r.content

    def download(self, url: str, fileobj: BinaryIO, quiet: bool = False) -> int:
        """
        Stream `url` into `fileobj`. Returns the number of bytes written.
        """
        sink = fileobj if quiet else ProgressWriter(fileobj)
        written = 0
        with self._request(url, stream=True) as r:
            try:
                for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        sink.write(chunk)
                        written += len(chunk)
            except requests.RequestException as e:
                raise ConnectionFailedError(f"download of {url} interrupted: {e}") from e
        if not quiet:
            log.info("Download finished: %s", human_bytes(written))
        return written
