"""
SQL 生成相关模型

- GenerationContext: 一次生成请求的上下文
- BackendOutput: 后端返回的原始结果
- ValidationResult: SQL 校验结果
- GenerationResult: 单模型（回退链）生成结果
- EnsembleResult: 集成模式生成结果
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .example import RankedExample
from .schema_context import SchemaDescription


class QueryCategory(str, Enum):
    """生成请求类别（用于模型选择）"""
    SIMPLE = "simple"
    COMPLEX = "complex"
    ANALYTICS = "analytics"


class GenerationContext(BaseModel):
    """生成上下文"""
    user_query: str = Field(..., min_length=1, description="用户自然语言查询")
    schema_description: SchemaDescription = Field(default_factory=SchemaDescription, alias="schema")
    query_category: QueryCategory = Field(default=QueryCategory.SIMPLE, description="查询类别")
    dialect: str = Field(default="postgresql", description="SQL 方言")
    retry_attempt: int = Field(default=0, ge=0, description="重试序号（0 为首次）")
    previous_error: Optional[str] = Field(default=None, description="上一次失败的错误信息")
    examples: List[RankedExample] = Field(default_factory=list, description="Few-shot 示例")

    class Config:
        populate_by_name = True

    def for_retry(self, attempt: int, previous_error: Optional[str]) -> "GenerationContext":
        """生成重试用的上下文副本"""
        return self.model_copy(update={"retry_attempt": attempt, "previous_error": previous_error})


class BackendOutput(BaseModel):
    """后端调用结果"""
    sql: str
    explanation: str = ""
    confidence: float = Field(default=0.0, ge=0, le=100, description="模型自报置信度 0-100")


class ValidationResult(BaseModel):
    """SQL 校验结果"""
    is_valid: bool = True
    syntax_errors: List[str] = Field(default_factory=list)
    semantic_errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0, le=100)

    @property
    def has_syntax_errors(self) -> bool:
        return len(self.syntax_errors) > 0


class GenerationResult(BaseModel):
    """生成结果"""
    sql: str
    explanation: str = ""
    confidence: float = 0.0
    model_used: str
    generation_time_ms: float = 0.0
    validation_result: Optional[ValidationResult] = None
    alternatives: List[str] = Field(default_factory=list)
    attempts: List[str] = Field(default_factory=list, description="本次调用尝试过的模型")

    @property
    def validation_confidence(self) -> float:
        return self.validation_result.confidence if self.validation_result else 0.0


class EnsembleResult(BaseModel):
    """集成生成结果"""
    primary_result: GenerationResult
    alternative_results: List[GenerationResult] = Field(default_factory=list)
    consensus_score: float = Field(..., ge=0, le=100)
    recommended_result: GenerationResult

    @property
    def models_used(self) -> List[str]:
        return [self.primary_result.model_used] + [r.model_used for r in self.alternative_results]
