"""
HTTP client factory for the time-tracking API.
"""
from __future__ import annotations
from typing import Optional
import httpx


def create_http_client(
    timeout: float = 20.0,
    token: Optional[str] = None,
    user_agent: str = "timeops/0.1",
    **kwargs
) -> httpx.AsyncClient:
    """
    Create an async HTTP client with:
    - Timeout defaults (20s, 10s connect)
    - Bearer auth when a token is configured
    - JSON accept header and custom user-agent
    Retries are handled per call by the API client.
    """
    headers = kwargs.pop("headers", {})
    headers.setdefault("User-Agent", user_agent)
    headers.setdefault("Accept", "application/json")
    if token:
        headers.setdefault("Authorization", f"Bearer {token}")

    timeout_config = httpx.Timeout(timeout, connect=10.0)
    transport = httpx.AsyncHTTPTransport(retries=0)

    return httpx.AsyncClient(
        timeout=timeout_config,
        headers=headers,
        transport=transport,
        **kwargs
    )
