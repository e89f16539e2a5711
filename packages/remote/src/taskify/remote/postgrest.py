"""PostgrestClient -- 远端 REST 表接口的 httpx 封装

远端以 PostgREST 方式暴露表：{remote_url}/rest/v1/<table>。
过滤条件走 query string（eq./in.），写操作带 Prefer: return=representation
以拿到服务端计算后的完整行。
"""

from typing import Any

import httpx
import structlog

from .exceptions import RemoteStoreError, RemoteUnreachableError

log = structlog.get_logger()

Row = dict[str, Any]


def eq(value: Any) -> str:
    """等值过滤"""
    return f"eq.{value}"


def in_(values: list[str]) -> str:
    """成员过滤，值加双引号避免逗号歧义"""
    quoted = ",".join(f'"{v}"' for v in values)
    return f"in.({quoted})"


class PostgrestClient:
    """PostgREST 客户端

    持有一个 httpx.AsyncClient；测试时可注入带 MockTransport 的实例。
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_s: int = 10,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Args:
            base_url: 远端项目地址
            api_key: 匿名访问密钥（apikey 头）
            timeout_s: 请求超时（秒）
            http_client: 外部传入的 AsyncClient，传入时由调用方负责关闭
        """
        self._rest_url = f"{base_url.rstrip('/')}/rest/v1"
        self._api_key = api_key
        self._access_token: str | None = None
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_s)

    @property
    def rest_url(self) -> str:
        return self._rest_url

    @property
    def access_token(self) -> str | None:
        return self._access_token

    def set_access_token(self, token: str | None) -> None:
        """切换会话令牌；None 表示回到匿名密钥"""
        self._access_token = token

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token or self._api_key}",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def select(
        self,
        table: str,
        *,
        filters: dict[str, str] | None = None,
        columns: str = "*",
        order: str | None = None,
    ) -> list[Row]:
        params = {"select": columns, **(filters or {})}
        if order:
            params["order"] = order
        return await self._request("GET", table, params=params)

    async def insert(self, table: str, rows: Row | list[Row]) -> list[Row]:
        return await self._request(
            "POST",
            table,
            json=rows,
            prefer="return=representation",
        )

    async def update(
        self,
        table: str,
        values: Row,
        *,
        filters: dict[str, str],
    ) -> list[Row]:
        return await self._request(
            "PATCH",
            table,
            params=filters,
            json=values,
            prefer="return=representation",
        )

    async def delete(self, table: str, *, filters: dict[str, str]) -> list[Row]:
        return await self._request("DELETE", table, params=filters)

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> list[Row]:
        """发送请求并把响应体归一为行列表

        Raises:
            RemoteUnreachableError: 连接失败或超时
            RemoteStoreError: 非 2xx 响应或响应体不是 JSON
        """
        url = f"{self._rest_url}/{table}"
        try:
            resp = await self._client.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(prefer),
            )
        except httpx.TransportError as e:
            log.warning(
                "remote_request_unreachable",
                method=method,
                table=table,
                error_type=type(e).__name__,
            )
            raise RemoteUnreachableError(url, e) from e

        if resp.status_code >= 400:
            log.warning(
                "remote_request_rejected",
                method=method,
                table=table,
                status_code=resp.status_code,
            )
            raise RemoteStoreError(resp.status_code, resp.text)

        if not resp.content:
            return []
        try:
            data = resp.json()
        except ValueError as e:
            raise RemoteStoreError(resp.status_code, "响应不是合法 JSON") from e
        if isinstance(data, list):
            return data
        return [data] if data else []

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
