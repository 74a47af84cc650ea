"""
查询意图模型与识别器接口

IntentClassifier 是可替换的接口：默认实现为基于规则的 RegexIntentClassifier，
也可以注入基于 LLM 的实现，只要提供 classify(query, schema) 方法即可。
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol, runtime_checkable

from nlsql.schemas.example import Complexity, PatternCategory
from nlsql.schemas.generation import QueryCategory
from nlsql.schemas.schema_context import SchemaDescription


# ============================================================================
# 数据模型
# ============================================================================

class IntentType(str, Enum):
    """查询意图类型"""
    SELECT_ALL = "select_all"
    FILTER = "filter"
    AGGREGATE = "aggregate"
    JOIN = "join"
    SUBQUERY = "subquery"
    ANALYTICS = "analytics"
    COUNT = "count"
    TOP_N = "top_n"
    COMPARISON = "comparison"       # 对比分析
    TIME_SERIES = "time_series"     # 时间序列


# 归入分析类生成请求的意图
ANALYTICS_INTENTS = {IntentType.ANALYTICS, IntentType.TIME_SERIES, IntentType.COMPARISON}

_EXAMPLE_CATEGORIES = {c.value for c in PatternCategory}


@dataclass
class RecognizedPattern:
    """命中的模式规则"""
    name: str
    confidence: float
    keywords: List[str] = field(default_factory=list)   # 查询中出现的规则关键词
    sql_hints: List[str] = field(default_factory=list)


@dataclass
class QueryIntent:
    """意图识别结果"""
    category: IntentType
    complexity: Complexity
    entities: List[str] = field(default_factory=list)     # 涉及的表
    operations: List[str] = field(default_factory=list)   # 预计需要的 SQL 操作
    conditions: List[str] = field(default_factory=list)   # 提取出的条件，如 "location: new york"
    confidence: float = 0.0                               # 0-100
    patterns: List[RecognizedPattern] = field(default_factory=list)

    @property
    def generation_category(self) -> QueryCategory:
        """映射为模型选择使用的请求类别"""
        if self.category in ANALYTICS_INTENTS:
            return QueryCategory.ANALYTICS
        if self.complexity in (Complexity.MEDIUM, Complexity.COMPLEX):
            return QueryCategory.COMPLEX
        return QueryCategory.SIMPLE

    @property
    def preferred_pattern_keys(self) -> List[str]:
        """用于示例检索的偏好模式键"""
        if self.category.value not in _EXAMPLE_CATEGORIES:
            return []
        return [f"{self.category.value}_{self.complexity.value}"]


@dataclass
class HandlingSuggestions:
    """针对意图的 SQL 生成建议"""
    sql_template: str = ""
    optimizations: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


# ============================================================================
# 接口
# ============================================================================

@runtime_checkable
class IntentClassifier(Protocol):
    """意图识别器接口"""

    def classify(self, query: str, schema: Optional[SchemaDescription] = None) -> QueryIntent:
        ...
