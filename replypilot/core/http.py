from __future__ import annotations

import httpx


def build_http_client(*, timeout: float = 10.0) -> httpx.Client:
    return httpx.Client(timeout=timeout, follow_redirects=False)
