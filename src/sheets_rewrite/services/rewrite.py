"""Rewrite service: validation, scheduling, retries and metrics around the
completion client.

A request flows through::

    RewriteRequest validation
      -> RequestScheduler.enqueue (admission, FIFO, queue/execution timeouts)
        -> RetryExecutor.execute (classified backoff-with-jitter)
          -> CompletionClient.complete

Every collaborator is an explicitly constructed instance owned by the
service (or injected by the caller); nothing is shared through module
globals.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Union

from sheets_rewrite.config.server import ServiceConfig
from sheets_rewrite.core.classifier import AlertHook, ErrorContext, classify_failure, handle_error
from sheets_rewrite.core.concurrency import RequestScheduler
from sheets_rewrite.core.context import request_context
from sheets_rewrite.core.errors import RewriteError
from sheets_rewrite.core.observability.performance import MetricEntry, PerformanceMonitor
from sheets_rewrite.core.retry import RetryExecutor
from sheets_rewrite.core.validation import RewriteRequest
from sheets_rewrite.services.completion import CompletionClient

logger = logging.getLogger(__name__)

ENDPOINT = "rewrite"


def build_prompt(prompt: str, main_text: str, context_text: Optional[str] = None) -> str:
    """Assemble the single user message sent to the completion API."""
    full_prompt = f"{prompt}\n\nText to rewrite:\n{main_text}"
    if context_text and context_text.strip():
        full_prompt += f"\n\nAdditional context:\n{context_text}"
    return full_prompt + "\n\nRewritten text:"


@dataclass(frozen=True)
class RewriteResponse:
    """Outcome of one rewrite request."""

    success: bool
    http_status: int = 200
    rewritten_text: Optional[str] = None
    error: Optional[Dict[str, str]] = None
    request_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape expected by the spreadsheet add-on."""
        if self.success:
            return {"success": True, "data": {"rewrittenText": self.rewritten_text}}
        return {"success": False, "error": self.error}


class RewriteService:
    """Composes the scheduler, retry executor and completion client.

    Example:
        >>> service = RewriteService(ServiceConfig.from_env())
        >>> response = await service.rewrite({"prompt": "Make it formal", "mainText": "hey team"})
        >>> response.to_dict()
        {'success': True, 'data': {'rewrittenText': 'Dear team, ...'}}

    Raises:
        ConfigurationError: At construction when no client is injected and
            no API key is configured
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        client: Optional[CompletionClient] = None,
        scheduler: Optional[RequestScheduler] = None,
        retry: Optional[RetryExecutor] = None,
        monitor: Optional[PerformanceMonitor] = None,
        alert: Optional[AlertHook] = None,
    ):
        self.config = config or ServiceConfig()
        self.client = client or CompletionClient(self.config.completion)
        # The service records its own metrics, so the scheduler gets no monitor
        self.scheduler = scheduler or RequestScheduler(self.config.queue, name=ENDPOINT)
        self.retry = retry or RetryExecutor(
            self.config.retry, include_stack=not self.config.is_production
        )
        self.monitor = monitor or PerformanceMonitor(self.config.performance)
        self._alert = alert

    async def rewrite(
        self,
        request: Union[RewriteRequest, Mapping[str, Any]],
        *,
        context: Optional[ErrorContext] = None,
    ) -> RewriteResponse:
        """Validate and run a rewrite request; never raises for request failures.

        Args:
            request: A RewriteRequest or a decoded JSON body
            context: Optional request details for error records

        Returns:
            RewriteResponse carrying either the text or a ``{code, message}``
            error with its HTTP status equivalent
        """
        if isinstance(request, RewriteRequest):
            supplied = request.request_id
        elif isinstance(request, Mapping):
            supplied = request.get("requestId") or request.get("request_id")
        else:
            supplied = None
        request_id = (context.request_id if context else None) or (
            supplied if isinstance(supplied, str) and supplied.strip() else None
        )
        async with request_context(request_id=request_id, endpoint=ENDPOINT) as rid:
            try:
                if not isinstance(request, RewriteRequest):
                    request = RewriteRequest.from_payload(request)
                text = await self._execute(request, rid)
            except Exception as e:
                classified = classify_failure(e)
                api_error, status = handle_error(
                    classified.kind,
                    classified,
                    context,
                    include_stack=not self.config.is_production,
                    alert=self._alert,
                )
                return RewriteResponse(
                    success=False,
                    http_status=status,
                    error=api_error.to_dict(),
                    request_id=rid,
                )
            return RewriteResponse(success=True, rewritten_text=text, request_id=rid)

    async def rewrite_text(
        self,
        prompt: str,
        main_text: str,
        context_text: Optional[str] = None,
    ) -> str:
        """Rewrite ``main_text`` and return the text.

        Raises:
            RewriteError: Classified validation, scheduling or completion failure
        """
        request = RewriteRequest.from_payload(
            {"prompt": prompt, "main_text": main_text, "context_text": context_text}
        )
        async with request_context(endpoint=ENDPOINT) as rid:
            return await self._execute(request, rid)

    async def _execute(self, request: RewriteRequest, request_id: str) -> str:
        full_prompt = build_prompt(request.prompt, request.main_text, request.context_text)
        started = time.monotonic()
        dispatched: Optional[float] = None
        retry_count = 0

        async def run() -> str:
            nonlocal dispatched, retry_count
            dispatched = time.monotonic()
            result = await self.retry.execute(
                lambda: self.client.complete(full_prompt), label=f"rewrite {request_id}"
            )
            retry_count = result.retry_count
            return result.unwrap()

        text: Optional[str] = None
        error: Optional[RewriteError] = None
        try:
            text = await self.scheduler.submit(run, label=request_id)
            return text
        except Exception as e:
            error = classify_failure(e)
            if error is e:
                raise
            raise error from e
        finally:
            finished = time.monotonic()
            queue_ms = ((dispatched or finished) - started) * 1000.0
            processing_ms = (finished - dispatched) * 1000.0 if dispatched else 0.0
            self.monitor.record_metric(
                MetricEntry(
                    request_id=request_id,
                    endpoint=ENDPOINT,
                    total_duration=(finished - started) * 1000.0,
                    queue_time=queue_ms,
                    processing_time=processing_ms,
                    response_time=processing_ms,
                    request_size=len(full_prompt),
                    response_size=len(text or ""),
                    retry_count=retry_count,
                    success=error is None,
                    error_kind=error.kind.value if error is not None else None,
                    status_code=error.http_status if error is not None else 200,
                )
            )
            logger.info(
                "Rewrite %s %s in %.0fms (%d retries)",
                request_id,
                "succeeded" if error is None else "failed",
                (finished - started) * 1000.0,
                retry_count,
            )

    async def test_connection(self) -> bool:
        return await self.client.test_connection()

    def health(self) -> Dict[str, Any]:
        """Scheduler and performance health with their statistics."""
        scheduler_healthy = self.scheduler.is_healthy()
        report = self.monitor.get_detailed_report()
        healthy = scheduler_healthy and report["is_healthy"]
        return {
            "status": "healthy" if healthy else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": self.config.environment,
            "scheduler": {
                "healthy": scheduler_healthy,
                "stats": self.scheduler.get_stats().to_dict(),
            },
            "performance": report,
        }


__all__ = [
    "RewriteResponse",
    "RewriteService",
    "build_prompt",
]
