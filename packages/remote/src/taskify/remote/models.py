"""提案引擎的 LLM 调用结果"""

from pydantic import BaseModel, Field


class CompletionResult(BaseModel):
    """一次 chat completion 的结果（content 为模型原始输出，交给 parse_proposal 解析）"""

    content: str = Field(description="模型原始输出")
    model_alias: str = Field(description="请求时使用的 Proxy 模型组")
    model_name: str = Field(default="", description="实际调用的模型名称")
    finish_reason: str = Field(default="", description="stop / length / ...")
    duration_ms: int = Field(ge=0, description="端到端耗时（毫秒）")
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)

    @property
    def truncated(self) -> bool:
        """输出被长度截断时 JSON 多半不完整"""
        return self.finish_reason == "length"
