"""Research gateway used to enrich consultations with real-time information.

ResearchGateway posts {query, context} to an external research function and
returns its prose answer. It never raises: every failure degrades to one of
the fixed fallback strings so a slow or broken research backend cannot
disturb agent orchestration.
"""

import logging

import httpx
from opentelemetry import trace

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("soc_room.tools")

RESEARCH_FAILED = "Unable to complete research at this time."
RESEARCH_UNAVAILABLE = "Research service unavailable."
RESEARCH_EMPTY = "No research results available."


class ResearchGateway:
    """Research lookups bound to one HTTP endpoint.

    Usage:
        gateway = ResearchGateway("https://.../functions/v1/research-query")
        answer = await gateway.query("Is the area near my hotel safe?", context)

    A client can be injected for tests; otherwise a short-lived
    httpx.AsyncClient is created per call.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str = "",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Store the endpoint, credentials, timeout and optional client."""
        self._endpoint = endpoint
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self._endpoint)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def _post(self, payload: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(
                self._endpoint, json=payload, headers=self._headers()
            )
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(
                self._endpoint, json=payload, headers=self._headers()
            )

    async def query(self, query: str, context: str | None = None) -> str:
        """Run a research lookup and return prose, or a fallback string."""
        if not self.is_configured:
            logger.warning("Research endpoint not configured")
            return RESEARCH_FAILED

        with tracer.start_as_current_span("research_query") as span:
            span.set_attribute("research.query_length", len(query))
            span.set_attribute("research.context_length", len(context or ""))
            try:
                response = await self._post({"query": query, "context": context})
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as exc:
                logger.error(
                    "Research query error: HTTP %s", exc.response.status_code
                )
                span.set_attribute("research.outcome", "error")
                return RESEARCH_FAILED
            except ValueError as exc:
                logger.error("Research query returned invalid JSON: %s", exc)
                span.set_attribute("research.outcome", "error")
                return RESEARCH_FAILED
            except Exception as exc:
                span.record_exception(exc)
                logger.warning("Research service unavailable: %s", exc)
                span.set_attribute("research.outcome", "unavailable")
                return RESEARCH_UNAVAILABLE

            research = data.get("research") if isinstance(data, dict) else None
            if not research:
                span.set_attribute("research.outcome", "empty")
                return RESEARCH_EMPTY

            span.set_attribute("research.outcome", "ok")
            return str(research)
