"""
Text2SQL 服务请求/响应模型
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from .example import Complexity, RankedExample
from .generation import GenerationResult, QueryCategory, ValidationResult
from .schema_context import SchemaDescription


class Text2SQLRequest(BaseModel):
    """SQL 生成请求"""
    user_query: str = Field(..., min_length=1, description="用户自然语言查询")
    schema_description: SchemaDescription = Field(default_factory=SchemaDescription, alias="schema")
    dialect: Optional[str] = Field(default=None, description="SQL 方言，为空时使用 DEFAULT_SQL_DIALECT")
    use_ensemble: bool = Field(default=False, description="复杂查询是否使用集成模式")
    max_examples: Optional[int] = Field(default=None, ge=1, description="Few-shot 示例数量")

    class Config:
        extra = "ignore"
        populate_by_name = True


class IntentSummary(BaseModel):
    """意图识别摘要"""
    category: str
    complexity: Complexity
    generation_category: QueryCategory
    confidence: float = 0.0
    entities: List[str] = Field(default_factory=list)
    conditions: List[str] = Field(default_factory=list)


class EnsembleInfo(BaseModel):
    """集成模式信息"""
    consensus_score: float
    models_used: List[str] = Field(default_factory=list)


class Text2SQLResponse(BaseModel):
    """SQL 生成响应"""
    query_id: str
    sql: str
    explanation: str = ""
    confidence: float = Field(..., ge=0, le=100, description="综合置信度")
    model_used: str
    generation_time_ms: float = 0.0
    validation_result: Optional[ValidationResult] = None
    intent: IntentSummary
    examples_used: List[RankedExample] = Field(default_factory=list)
    alternatives: List[str] = Field(default_factory=list)
    attempts: List[str] = Field(default_factory=list)
    ensemble_info: Optional[EnsembleInfo] = None

    @classmethod
    def from_result(cls, query_id: str, result: GenerationResult, confidence: float,
                    intent: IntentSummary, examples: List[RankedExample],
                    ensemble_info: Optional[EnsembleInfo] = None) -> "Text2SQLResponse":
        return cls(
            query_id=query_id,
            sql=result.sql,
            explanation=result.explanation,
            confidence=confidence,
            model_used=result.model_used,
            generation_time_ms=result.generation_time_ms,
            validation_result=result.validation_result,
            intent=intent,
            examples_used=examples,
            alternatives=result.alternatives,
            attempts=result.attempts,
            ensemble_info=ensemble_info,
        )


class FeedbackRequest(BaseModel):
    """用户反馈"""
    query_id: str
    example_ids: List[str] = Field(default_factory=list, description="本次使用的示例 ID")
    was_successful: bool
    satisfaction: Optional[float] = Field(default=None, ge=0, le=100, description="用户满意度 0-100")
