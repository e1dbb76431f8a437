from __future__ import annotations

import threading
from typing import Optional

import requests


class SessionProvider:
    """Per-thread `requests.Session`, or one injected session shared by every caller.

    Blocking request handlers run on the threadpool, and a single Session is not
    guaranteed to be thread-safe, so each worker thread gets its own pool.
    """

    def __init__(self, session: Optional[requests.Session] = None):
        self._shared = session
        self._local = threading.local()

    def current(self) -> requests.Session:
        if self._shared is not None:
            return self._shared
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
        return session
