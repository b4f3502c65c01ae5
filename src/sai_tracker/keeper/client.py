"""Sai keeper GraphQL client (httpx)."""

from __future__ import annotations

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = structlog.get_logger()


class GraphQLError(Exception):
    """The endpoint answered with an errors array or without data."""


class GraphQLClient:
    def __init__(self, url: str, timeout: float = 30.0) -> None:
        self.url = url
        self.timeout = timeout

    async def query(self, query: str, variables: dict | None = None) -> dict:
        """Run one query and return its ``data`` object."""
        body = await self._post({"query": query, "variables": variables or {}})
        errors = body.get("errors")
        if errors:
            raise GraphQLError(", ".join(str(e.get("message", e)) for e in errors))
        data = body.get("data")
        if not data:
            raise GraphQLError("No data returned from GraphQL query")
        return data

    @retry(
        retry=retry_if_exception_type(httpx.HTTPError),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.2, max=2),
        reraise=True,
    )
    async def _post(self, payload: dict) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout) as http:
            response = await http.post(
                self.url,
                headers={"Content-Type": "application/json"},
                json=payload,
            )
            response.raise_for_status()
            return response.json()
