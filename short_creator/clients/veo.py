from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

import httpx

from short_creator.clients.poller import Sleep, TaskPoller, TaskStatus
from short_creator.errors import PipelineError, mentions_content_policy
from short_creator.models.domain import ExternalTask, TaskState

GENERATION_TYPE = "FIRST_AND_LAST_FRAMES_2_VIDEO"

# successFlag values reported by the record-info endpoint
_FLAG_STATES = {
    0: TaskState.GENERATING,
    1: TaskState.SUCCEEDED,
    2: TaskState.FAILED,
    3: TaskState.FAILED,
}


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    return min(base * (2 ** attempt), cap)


class VeoClient:
    """Client for the image-to-video generation API.

    ``generate`` submits a task, waits for it through :class:`TaskPoller` and
    resubmits a brand-new task on retryable failures with capped exponential
    backoff.
    """

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.kie.ai/api/v1",
        upload_url: str = "https://kieai.redpandaai.co/api/file-stream-upload",
        poller: Optional[TaskPoller] = None,
        timeout: float = 30.0,
        retry_base_delay: float = 2.0,
        retry_max_delay: float = 30.0,
        sleep: Sleep = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.upload_url = upload_url
        self.timeout = timeout
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.log = logger or logging.getLogger(__name__)
        self.poller = poller or TaskPoller(sleep=sleep, logger=self.log)
        self._sleep = sleep
        self._transport = transport

    def enabled(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def generate(
        self,
        prompt: str,
        start_image_url: str,
        end_image_url: str | None = None,
        aspect_ratio: str = "Auto",
        model: str = "veo3",
        max_retries: int = 2,
    ) -> str:
        if not self.enabled():
            raise PipelineError.provider_request_failed("Provider API key is not configured", prompt=prompt)
        image_urls = [start_image_url, end_image_url or start_image_url]
        attempt = 0
        async with self._client() as client:
            while True:
                try:
                    task = await self._create_task(client, prompt, image_urls, aspect_ratio, model)
                    return await self.poller.wait(task, lambda task_id: self._fetch_status(client, task_id))
                except PipelineError as exc:
                    if not exc.retryable or attempt >= max_retries:
                        self.log.error(
                            "provider generation failed",
                            extra={**exc.context(), "attempt": attempt + 1, "max_retries": max_retries},
                        )
                        raise
                    delay = backoff_delay(attempt, self.retry_base_delay, self.retry_max_delay)
                    self.log.warning(
                        "provider generation failed, retrying with a new task",
                        extra={**exc.context(), "attempt": attempt + 1, "delay": delay},
                    )
                    await self._sleep(delay)
                    attempt += 1

    async def _create_task(
        self,
        client: httpx.AsyncClient,
        prompt: str,
        image_urls: list[str],
        aspect_ratio: str,
        model: str,
    ) -> ExternalTask:
        payload = {
            "prompt": prompt,
            "imageUrls": image_urls,
            "model": model,
            "generationType": GENERATION_TYPE,
            "aspectRatio": aspect_ratio,
            "enableTranslation": True,
        }
        self.log.debug("starting provider generation", extra={"payload": payload})
        try:
            response = await client.post(f"{self.base_url}/veo/generate", json=payload, headers=self._headers())
        except httpx.RequestError as exc:
            raise PipelineError.provider_request_failed(
                f"Provider request failed: {exc}",
                prompt=prompt,
            ) from exc
        body = self._json(response)
        code = body.get("code")
        if response.is_success and code == 200:
            task_id = (body.get("data") or {}).get("taskId")
            if task_id:
                self.log.info("provider task started", extra={"task_id": task_id, "model": model})
                return ExternalTask(task_id=str(task_id), prompt=prompt)
        raise self._create_failure(response, body, prompt)

    def _create_failure(self, response: httpx.Response, body: dict[str, Any], prompt: str) -> PipelineError:
        text = response.text
        provider_message = body.get("msg") or text
        code = body.get("code") if isinstance(body.get("code"), int) else None
        if mentions_content_policy(text):
            return PipelineError.content_policy(provider_message, prompt, status_code=response.status_code)
        status = response.status_code if not response.is_success else code
        return PipelineError.provider_request_failed(
            "Provider API request failed",
            status_code=status,
            provider_code=code,
            provider_message=provider_message,
            prompt=prompt,
        )

    async def _fetch_status(self, client: httpx.AsyncClient, task_id: str) -> TaskStatus:
        response = await client.get(
            f"{self.base_url}/veo/record-info",
            params={"taskId": task_id},
            headers=self._headers(),
        )
        body = self._json(response)
        code = body.get("code")
        if not response.is_success or code != 200:
            raise PipelineError.provider_request_failed(
                "Provider status check failed",
                status_code=response.status_code if not response.is_success else code,
                provider_code=code if isinstance(code, int) else None,
                provider_message=body.get("msg") or response.text,
                task_id=task_id,
            )
        data = body.get("data") or {}
        flag = data.get("successFlag")
        state = _FLAG_STATES.get(flag, TaskState.GENERATING)
        result_urls = (data.get("response") or {}).get("resultUrls") or []
        return TaskStatus(
            state=state,
            result_url=result_urls[0] if result_urls else None,
            error_message=data.get("errorMessage"),
            code=flag,
        )

    async def upload_file(self, path: Path) -> str:
        """Push a local file to the provider's storage and return its public url."""
        self.log.debug("uploading file to provider", extra={"path": str(path)})
        async with self._client() as client:
            response = await client.post(
                self.upload_url,
                files={"file": (path.name, path.read_bytes())},
                data={"uploadPath": "veo-images"},
                headers=self._headers(),
            )
        body = self._json(response)
        if not response.is_success or body.get("code") != 200:
            raise PipelineError.provider_request_failed(
                f"Provider upload failed: {body.get('msg') or response.text}",
                status_code=response.status_code if not response.is_success else body.get("code"),
                provider_message=body.get("msg"),
            )
        url = (body.get("data") or {}).get("downloadUrl")
        if not url:
            raise PipelineError.provider_request_failed(f"Provider upload returned no url: {body}")
        self.log.info("file uploaded to provider", extra={"path": str(path), "url": url})
        return url

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
