"""LiteLLMClient -- 提案引擎使用的 LiteLLM Proxy 调用封装

连接失败 / 超时 / 上游不可用映射为 RemoteUnreachableError（FallbackManager 据此降级），
其余错误映射为 ProposalEngineError。
"""

import time
from typing import Any

import httpx
import litellm
import structlog
from litellm import acompletion

from .exceptions import ProposalEngineError, RemoteUnreachableError
from .models import CompletionResult

log = structlog.get_logger()

HEALTH_CHECK_TIMEOUT_S = 5

_UNREACHABLE_ERRORS = (
    ConnectionError,
    TimeoutError,
    OSError,
    httpx.TransportError,
    litellm.APIConnectionError,
    litellm.Timeout,
    litellm.ServiceUnavailableError,
)


def _build_result(response: Any, model_alias: str, duration_ms: int) -> CompletionResult:
    choice = response.choices[0]
    usage = getattr(response, "usage", None)
    return CompletionResult(
        content=choice.message.content or "",
        model_alias=model_alias,
        model_name=getattr(response, "model", "") or "",
        finish_reason=getattr(choice, "finish_reason", "") or "",
        duration_ms=duration_ms,
        prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
        completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
    )


class LiteLLMClient:
    def __init__(
        self,
        proxy_base_url: str = "http://localhost:4000",
        proxy_api_key: str = "",
        timeout_s: int = 30,
    ) -> None:
        self._proxy_base_url = proxy_base_url.rstrip("/")
        self._proxy_api_key = proxy_api_key
        self._timeout_s = timeout_s

    @property
    def proxy_base_url(self) -> str:
        return self._proxy_base_url

    async def complete(
        self,
        messages: list[dict[str, str]],
        model_alias: str = "main",
        temperature: float = 0.2,
        json_reply: bool = False,
    ) -> CompletionResult:
        """发送 chat completion 请求

        Args:
            messages: [{"role": ..., "content": ...}]，system 在前、用户消息在后
            model_alias: Proxy 上配置的模型组名
            json_reply: True 时要求模型以 JSON 对象作答

        Raises:
            RemoteUnreachableError: Proxy 不可达或上游不可用
            ProposalEngineError: 其余调用错误
        """
        call_kwargs: dict[str, Any] = {
            "model": model_alias,
            "messages": messages,
            "api_base": self._proxy_base_url,
            "api_key": self._proxy_api_key or "no-key",
            "temperature": temperature,
            "timeout": self._timeout_s,
        }
        if json_reply:
            call_kwargs["response_format"] = {"type": "json_object"}

        start = time.monotonic()
        try:
            response = await acompletion(**call_kwargs)
        except _UNREACHABLE_ERRORS as e:
            log.warning(
                "proposal_llm_unreachable",
                model_alias=model_alias,
                error_type=type(e).__name__,
            )
            raise RemoteUnreachableError(self._proxy_base_url, e) from e
        except Exception as e:
            log.error(
                "proposal_llm_failed",
                model_alias=model_alias,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ProposalEngineError(f"LLM 调用失败: {e}") from e

        result = _build_result(response, model_alias, int((time.monotonic() - start) * 1000))
        log.info(
            "proposal_llm_completed",
            model_alias=model_alias,
            model_name=result.model_name,
            finish_reason=result.finish_reason,
            duration_ms=result.duration_ms,
        )
        return result

    async def health_check(self) -> bool:
        """GET {proxy}/health/liveliness，不抛出异常"""
        url = f"{self._proxy_base_url}/health/liveliness"
        try:
            async with httpx.AsyncClient() as http_client:
                resp = await http_client.get(url, timeout=HEALTH_CHECK_TIMEOUT_S)
        except httpx.HTTPError as e:
            log.debug("proposal_llm_health_failed", url=url, error=str(e))
            return False
        return resp.status_code == 200
