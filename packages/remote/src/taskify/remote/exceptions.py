"""Remote 异常体系

适配器内部抛出，在适配器边界被转换为降级返回值（部分列表 / None / False），
不会穿透到 Reconciler 的公开操作。
"""


class RemoteError(Exception):
    """Remote 包基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试或降级恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class RemoteUnreachableError(RemoteError):
    """远端不可达（连接失败、超时、DNS 解析失败等）"""

    def __init__(self, url: str, original_error: Exception) -> None:
        """
        Args:
            url: 尝试访问的地址
            original_error: 原始异常
        """
        super().__init__(f"远端不可达: {url} -- {original_error}", recoverable=True)
        self.url = url
        self.original_error = original_error


class RemoteStoreError(RemoteError):
    """远端返回非 2xx（鉴权失败、约束冲突、后端错误等）"""

    def __init__(self, status_code: int, detail: str = "") -> None:
        super().__init__(
            f"远端返回 {status_code}: {detail[:200]}",
            recoverable=status_code >= 500,
        )
        self.status_code = status_code
        self.detail = detail


class ProposalEngineError(RemoteError):
    """AI 提案引擎调用失败

    此异常触发 FallbackManager 的降级逻辑。
    """
