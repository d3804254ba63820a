"""
Client for the OpenAI-compatible chat-completions gateway.

Two modes share one endpoint: a forced tool call returning structured
arguments, and a streamed free-text completion. Both map HTTP status before
touching the body and run under a hard wall-clock budget covering connect,
headers and every streamed chunk.
"""
import asyncio
import logging
import time
from typing import AsyncIterator, Optional

import httpx

from config import settings
from services.errors import (
    AIRoundTripError,
    UpstreamFailure,
    UpstreamQuotaExceeded,
    UpstreamRateLimited,
    UpstreamTimeout,
)
from services.stream_decoder import StreamDecoder
from services.tool_payload import extract_tool_arguments

logger = logging.getLogger(__name__)


def _parse_retry_after(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return max(0, int(float(value)))
    except ValueError:
        return None


def raise_for_upstream_status(status_code: int, headers, body: str = "") -> None:
    if 200 <= status_code < 300:
        return
    if status_code == 429:
        raise UpstreamRateLimited(retry_after=_parse_retry_after(headers.get("retry-after")))
    if status_code == 402:
        raise UpstreamQuotaExceeded("AI credits exhausted")
    raise UpstreamFailure(f"AI gateway error: {status_code}", status_code=status_code, body=body[:500])


class AIGatewayClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout_sec: Optional[float] = None,
        temperature: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.ai_gateway_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.ai_gateway_api_key
        self.model = model or settings.ai_model
        self.timeout_sec = timeout_sec or settings.ai_timeout_sec
        self.temperature = settings.ai_temperature if temperature is None else temperature
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout_sec,
            transport=self._transport,
        )

    def _body(self, system_prompt: str, user_prompt: str, **extra) -> dict:
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.temperature,
        }
        body.update(extra)
        return body

    async def invoke_tool(self, system_prompt: str, user_prompt: str, tool: dict) -> dict:
        """Force a single tool call and return its parsed arguments."""
        name = tool["function"]["name"]
        body = self._body(
            system_prompt,
            user_prompt,
            tools=[tool],
            tool_choice={"type": "function", "function": {"name": name}},
        )
        start = time.time()
        try:
            data = await asyncio.wait_for(self._post_json(body), timeout=self.timeout_sec)
        except asyncio.TimeoutError:
            logger.error(f"AI tool call '{name}' timed out after {self.timeout_sec}s")
            raise UpstreamTimeout(f"AI gateway did not answer within {self.timeout_sec}s")

        logger.info(f"AI tool call '{name}' answered in {time.time() - start:.1f}s")
        return extract_tool_arguments(data, name)

    async def _post_json(self, body: dict) -> dict:
        try:
            async with self._client() as client:
                response = await client.post("/chat/completions", json=body)
                if response.status_code >= 300:
                    logger.error(f"AI gateway error {response.status_code}: {response.text[:300]}")
                raise_for_upstream_status(response.status_code, response.headers, response.text)
                try:
                    return response.json()
                except ValueError as e:
                    raise UpstreamFailure(f"AI gateway returned non-JSON body: {e}", status_code=response.status_code)
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(f"AI gateway timed out: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"AI gateway transport error: {e}") from e

    async def stream_text(self, system_prompt: str, user_prompt: str) -> AsyncIterator[str]:
        """Yield text deltas of a streamed completion until the terminator."""
        body = self._body(system_prompt, user_prompt, stream=True)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_sec

        def remaining() -> float:
            left = deadline - loop.time()
            if left <= 0:
                raise UpstreamTimeout(f"AI stream exceeded {self.timeout_sec}s")
            return left

        try:
            async with self._client() as client:
                request = client.build_request("POST", "/chat/completions", json=body)
                try:
                    response = await asyncio.wait_for(client.send(request, stream=True), timeout=remaining())
                except asyncio.TimeoutError:
                    raise UpstreamTimeout(f"AI gateway did not answer within {self.timeout_sec}s")

                try:
                    if response.status_code >= 300:
                        error_body = (await response.aread()).decode("utf-8", errors="replace")
                        logger.error(f"AI gateway stream error {response.status_code}: {error_body[:300]}")
                        raise_for_upstream_status(response.status_code, response.headers, error_body)

                    frames = StreamDecoder().decode(response.aiter_bytes())
                    try:
                        while True:
                            try:
                                frame = await asyncio.wait_for(frames.__anext__(), timeout=remaining())
                            except StopAsyncIteration:
                                break
                            except asyncio.TimeoutError:
                                raise UpstreamTimeout(f"AI stream exceeded {self.timeout_sec}s")
                            if frame.event_kind == "done":
                                break
                            yield frame.payload
                    finally:
                        await frames.aclose()
                finally:
                    await response.aclose()
        except AIRoundTripError:
            raise
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(f"AI gateway timed out: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"AI gateway transport error: {e}") from e
