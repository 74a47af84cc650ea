"""
Few-shot 示例相关模型

- PatternTag: 示例的查询模式标签
- Example: 自然语言 / SQL 示例对
- RankedExample: 单次排序调用产生的带分数视图（不持久化）

加载时严格校验：缺少必填字段或取值越界的记录会被拒绝，
由 loader 统一隔离（quarantine），不做静默默认。
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class PatternCategory(str, Enum):
    """示例查询类别"""
    SELECT_ALL = "select_all"
    FILTER = "filter"
    AGGREGATE = "aggregate"
    JOIN = "join"
    SUBQUERY = "subquery"
    ANALYTICS = "analytics"
    COUNT = "count"
    TOP_N = "top_n"


class Complexity(str, Enum):
    """查询复杂度"""
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


def _dedupe(values: List[str]) -> List[str]:
    """去重并保持顺序"""
    seen = set()
    result = []
    for value in values:
        value = str(value).strip()
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result


class PatternTag(BaseModel):
    """模式标签"""
    category: PatternCategory = Field(..., alias="type", description="查询类别")
    complexity: Complexity = Field(..., description="复杂度")
    tables: List[str] = Field(default_factory=list, description="引用的表")
    operations: List[str] = Field(default_factory=list, description="SQL 操作，如 JOIN、GROUP BY")
    keywords: List[str] = Field(default_factory=list, description="关键词")

    class Config:
        extra = "ignore"
        populate_by_name = True

    @field_validator("tables", "operations", "keywords")
    @classmethod
    def _unique(cls, v: List[str]) -> List[str]:
        return _dedupe(v)

    @property
    def pattern_key(self) -> str:
        """模式索引键：{category}_{complexity}"""
        return f"{self.category.value}_{self.complexity.value}"


class Example(BaseModel):
    """
    自然语言 / SQL 示例

    运行期只有 update_quality 会修改 usage_count、success_rate、quality_score。
    """
    id: str = Field(..., min_length=1, description="唯一 ID")
    natural_language: str = Field(..., min_length=1, alias="naturalLanguage", description="自然语言问题")
    sql: str = Field(..., min_length=1, description="SQL 语句")
    explanation: str = Field(default="", description="SQL 解释")
    schema_context: str = Field(default="", alias="schemaContext", description="适用的 Schema 说明")
    pattern: PatternTag = Field(..., alias="queryPattern", description="模式标签")
    quality_score: float = Field(default=85.0, ge=0, le=100, alias="qualityScore", description="质量评分 0-100")
    usage_count: int = Field(default=0, ge=0, alias="usageCount", description="使用次数")
    success_rate: float = Field(default=100.0, ge=0, le=100, alias="successRate", description="成功率 0-100（EMA）")
    tags: List[str] = Field(default_factory=list, description="标签")
    created_at: datetime = Field(default_factory=datetime.now, alias="createdAt")
    updated_at: datetime = Field(default_factory=datetime.now, alias="updatedAt")

    class Config:
        extra = "ignore"
        populate_by_name = True

    @field_validator("natural_language", "sql")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, v: List[str]) -> List[str]:
        return _dedupe(v)


class RankedExample(BaseModel):
    """带排序分数的示例"""
    example: Example
    similarity_score: float = Field(..., ge=0.0, le=1.0, description="文本相似度")
    relevance_score: float = Field(..., ge=0.0, le=1.0, description="Schema 相关度")
    final_score: float = Field(..., ge=0.0, description="加权总分")
    reason: str = Field(default="", description="推荐理由")

    @property
    def id(self) -> str:
        return self.example.id

    @property
    def natural_language(self) -> str:
        return self.example.natural_language

    @property
    def sql(self) -> str:
        return self.example.sql

    @property
    def pattern(self) -> PatternTag:
        return self.example.pattern


class LoadReport(BaseModel):
    """示例库加载报告"""
    loaded: int = 0
    quarantined: List[dict] = Field(default_factory=list, description="被隔离的记录及原因")
    source: Optional[str] = None
