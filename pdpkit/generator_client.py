"""
Generator backend client.
HTTP client for the rewrite backend (LLM proxy). The backend exposes:

- analyze: page payload -> Plan-shaped dict
- generate: region texts -> rewritten title/description/shipping/returns
- ocr: screenshot -> region detections with image-pixel bounding boxes

Every request carries the caller's trace id in the `x-trace-id` header and
the `trace_id` body field.
"""

import asyncio
from typing import Any

import httpx

from pdpkit.errors import GeneratorError
from pdpkit.utils.config import get_settings
from pdpkit.utils.logging import get_logger
from pdpkit.utils.schemas import FIELD_KEYS, PagePayload

logger = get_logger(__name__)


class GeneratorClient:
    """HTTP client for the generator backend."""

    def __init__(self, base_url: str | None = None) -> None:
        self._settings = get_settings()
        self._client: httpx.AsyncClient | None = None
        self._base_url = base_url or self._settings.generator.base_url

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._settings.generator.timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request_with_retry(
        self,
        endpoint: str,
        json: dict[str, Any],
        trace_id: str,
        operation: str,
    ) -> dict[str, Any]:
        """POST with retry logic.

        Args:
            endpoint: API endpoint.
            json: Request body.
            trace_id: Request trace id.
            operation: Operation name reported on failure.

        Returns:
            Response JSON object.

        Raises:
            GeneratorError: If all retries fail or the backend reports an error.
        """
        client = await self._get_client()
        max_retries = max(1, self._settings.generator.max_retries)
        last_error: Exception | None = None

        for attempt in range(max_retries):
            try:
                response = await client.post(
                    endpoint,
                    json=json,
                    headers={"x-trace-id": trace_id},
                )
                response.raise_for_status()
                body = response.json()
                break

            except httpx.HTTPStatusError as e:
                last_error = e
                logger.warning(
                    "Generator HTTP error",
                    endpoint=endpoint,
                    status_code=e.response.status_code,
                    attempt=attempt + 1,
                    trace_id=trace_id,
                )
            except httpx.RequestError as e:
                last_error = e
                logger.warning(
                    "Generator request error",
                    endpoint=endpoint,
                    error=str(e),
                    attempt=attempt + 1,
                    trace_id=trace_id,
                )
            except ValueError as e:
                raise GeneratorError(f"Invalid JSON from {operation}: {e}", operation) from e

            if attempt < max_retries - 1:
                delay = self._settings.generator.retry_delay * (2**attempt)
                await asyncio.sleep(delay)
        else:
            logger.error(
                "Generator request failed after retries",
                endpoint=endpoint,
                max_retries=max_retries,
                trace_id=trace_id,
            )
            raise GeneratorError(f"{operation} request failed: {last_error}", operation)

        if not isinstance(body, dict):
            raise GeneratorError(f"Invalid {operation} response: expected object", operation)
        if body.get("error"):
            logger.error("Generator reported error", operation=operation, error=body["error"])
            raise GeneratorError(f"{operation} failed: {body['error']}", operation)
        return body

    async def analyze(self, payload: PagePayload, trace_id: str) -> dict[str, Any]:
        """Ask the backend for a Plan-shaped analysis of a page.

        Args:
            payload: Page payload (html_raw is never sent).
            trace_id: Request trace id.

        Returns:
            Unvalidated Plan-shaped dict.
        """
        body = payload.model_dump(mode="json")
        body["trace_id"] = trace_id
        return await self._request_with_retry(
            self._settings.generator.analyze_path, body, trace_id, "analyze"
        )

    async def generate(
        self,
        texts: dict[str, str],
        trace_id: str,
        url: str = "",
        language: str = "",
    ) -> dict[str, str]:
        """Rewrite region texts.

        Args:
            texts: Current texts keyed by field (title/description/shipping/returns).
            trace_id: Request trace id.
            url: Page URL.
            language: Page language.

        Returns:
            Rewritten strings per field; missing or non-string entries become "".
        """
        body: dict[str, Any] = {"url": url, "language": language, "trace_id": trace_id}
        for key in FIELD_KEYS:
            body[key] = texts.get(key) or ""

        response = await self._request_with_retry(
            self._settings.generator.generate_path, body, trace_id, "generate"
        )
        return {
            key: response[key] if isinstance(response.get(key), str) else ""
            for key in FIELD_KEYS
        }

    async def ocr(
        self,
        image_data_url: str,
        image_meta: dict[str, Any],
        trace_id: str,
        url: str = "",
        language: str = "",
    ) -> list[dict[str, Any]]:
        """Detect PDP regions in a screenshot.

        Returns:
            Detections: {id?, type, bbox: {x, y, width, height}, proposed?}.
        """
        body: dict[str, Any] = {
            "url": url,
            "language": language,
            "trace_id": trace_id,
            "image_data_url": image_data_url,
        }
        for key in (
            "image_pixel_width",
            "image_pixel_height",
            "device_pixel_ratio",
            "page_width_css",
            "page_height_css",
        ):
            body[key] = image_meta.get(key)

        response = await self._request_with_retry(
            self._settings.generator.ocr_path, body, trace_id, "ocr"
        )
        detections = response.get("detections")
        if not isinstance(detections, list):
            raise GeneratorError("Invalid OCR response", "ocr")
        return [d for d in detections if isinstance(d, dict)]


# Global singleton
_client: GeneratorClient | None = None


def get_generator_client() -> GeneratorClient:
    """Get or create generator client singleton."""
    global _client
    if _client is None:
        _client = GeneratorClient()
    return _client


async def close_generator_client() -> None:
    """Close generator client."""
    global _client
    if _client is not None:
        await _client.close()
    _client = None
