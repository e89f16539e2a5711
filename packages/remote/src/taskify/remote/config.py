"""RemoteConfig -- 远端与 AI 引擎配置加载

从环境变量加载配置。未配置 TASKIFY_REMOTE_URL 时，会话始终走本地兜底路径。
"""

import os
from typing import Literal

import structlog
from pydantic import BaseModel, Field, SecretStr

log = structlog.get_logger()


class RemoteConfig(BaseModel):
    """Remote 包配置 -- 从环境变量加载

    环境变量:
        TASKIFY_REMOTE_URL: 远端项目地址（PostgREST 挂在 /rest/v1 下）
        TASKIFY_REMOTE_ANON_KEY: 远端匿名访问密钥
        TASKIFY_REMOTE_TIMEOUT_S: 远端请求超时（秒，默认 10）
        TASKIFY_FEED_URL: 变更流 SSE 地址（默认 {remote_url}/realtime/v1）
        TASKIFY_LLM_MODE: AI 引擎模式（litellm/keyword）
        LITELLM_PROXY_URL: LiteLLM Proxy 地址
        LITELLM_PROXY_KEY: Proxy 访问密钥
        TASKIFY_LLM_TIMEOUT_S: AI 调用超时（秒，默认 30）
    """

    remote_url: str | None = Field(default=None, description="远端项目地址")
    anon_key: SecretStr = Field(default=SecretStr(""), description="匿名访问密钥")
    timeout_s: int = Field(default=10, ge=1, description="远端请求超时（秒）")
    feed_url: str | None = Field(default=None, description="变更流 SSE 地址")
    llm_mode: Literal["litellm", "keyword"] = Field(
        default="keyword",
        description="AI 引擎模式：litellm / keyword",
    )
    proxy_base_url: str = Field(default="http://localhost:4000")
    proxy_api_key: SecretStr = Field(default=SecretStr(""))
    llm_timeout_s: int = Field(default=30, ge=1)

    @property
    def remote_enabled(self) -> bool:
        return bool(self.remote_url)

    @property
    def effective_feed_url(self) -> str | None:
        if self.feed_url:
            return self.feed_url
        if self.remote_url:
            return f"{self.remote_url.rstrip('/')}/realtime/v1"
        return None


def _int_env(name: str, default: int) -> int | None:
    val = os.environ.get(name)
    if not val:
        return None
    try:
        return int(val)
    except ValueError:
        log.warning(
            "invalid_int_config",
            env_var=name,
            value=val,
            fallback=default,
        )
        # 使用默认值，不阻塞启动
        return None


def load_remote_config() -> RemoteConfig:
    """从环境变量加载 Remote 配置

    Returns:
        RemoteConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("TASKIFY_REMOTE_URL"):
        kwargs["remote_url"] = val

    if val := os.environ.get("TASKIFY_REMOTE_ANON_KEY"):
        kwargs["anon_key"] = SecretStr(val)

    if (timeout := _int_env("TASKIFY_REMOTE_TIMEOUT_S", 10)) is not None:
        kwargs["timeout_s"] = timeout

    if val := os.environ.get("TASKIFY_FEED_URL"):
        kwargs["feed_url"] = val

    if val := os.environ.get("TASKIFY_LLM_MODE"):
        kwargs["llm_mode"] = val

    if val := os.environ.get("LITELLM_PROXY_URL"):
        kwargs["proxy_base_url"] = val

    if val := os.environ.get("LITELLM_PROXY_KEY"):
        kwargs["proxy_api_key"] = SecretStr(val)

    if (timeout := _int_env("TASKIFY_LLM_TIMEOUT_S", 30)) is not None:
        kwargs["llm_timeout_s"] = timeout

    return RemoteConfig(**kwargs)
