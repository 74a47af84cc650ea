"""
基于规则的意图识别器

每条规则由关键词、正则和基础置信度组成：
    score = 40 * 关键词命中率 + 40 * 正则命中率 + 0.2 * 规则置信度（上限 100）
关键词和正则都未命中的规则不算匹配。
required_keywords 至少命中一个、exclude_keywords 一个都不能命中，否则规则得分为 0。
得分最高的规则决定意图类型；没有规则匹配时为 select_all，置信度 0。
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Sequence

from nlsql.schemas.example import Complexity
from nlsql.schemas.schema_context import SchemaDescription
from nlsql.services.example_retrieval.utils import identify_relevant_tables
from .base import HandlingSuggestions, IntentType, QueryIntent, RecognizedPattern

logger = logging.getLogger(__name__)


@dataclass
class PatternRule:
    """模式识别规则"""
    name: str
    intent: IntentType
    complexity: Complexity
    keywords: List[str]
    patterns: List[Pattern]
    operations: List[str]
    confidence: float
    sql_hints: List[str]
    required_keywords: List[str] = field(default_factory=list)
    exclude_keywords: List[str] = field(default_factory=list)


def _compile(*expressions: str) -> List[Pattern]:
    return [re.compile(expr, re.IGNORECASE) for expr in expressions]


# ============================================================================
# 规则表
# ============================================================================

DEFAULT_RULES: List[PatternRule] = [
    PatternRule(
        name="basic_select_all",
        intent=IntentType.SELECT_ALL,
        complexity=Complexity.SIMPLE,
        keywords=["show", "list", "all", "display", "get"],
        patterns=_compile(
            r"^(show|list|display|get)\s+(me\s+)?(all\s+)?(\w+)s?$",
            r"^(all\s+)?(\w+)s?$",
        ),
        operations=["SELECT"],
        confidence=90,
        sql_hints=["SELECT * FROM table", "ORDER BY", "LIMIT"],
    ),
    PatternRule(
        name="simple_count",
        intent=IntentType.COUNT,
        complexity=Complexity.SIMPLE,
        keywords=["count", "how many", "number of", "total number"],
        required_keywords=["count", "many", "number"],
        patterns=_compile(
            r"^(how\s+many|count|number\s+of)\s+(\w+)s?",
            r"^total\s+number\s+of\s+(\w+)s?",
        ),
        operations=["COUNT"],
        confidence=95,
        sql_hints=["SELECT COUNT(*) FROM table"],
    ),
    PatternRule(
        name="location_filter",
        intent=IntentType.FILTER,
        complexity=Complexity.SIMPLE,
        keywords=["from", "in", "located", "city", "country", "state"],
        patterns=_compile(
            r"(\w+)s?\s+(from|in)\s+([a-zA-Z\s]+)",
            r"(from|in)\s+([a-zA-Z\s]+)",
        ),
        operations=["SELECT", "WHERE"],
        confidence=85,
        sql_hints=["WHERE city = ?", "WHERE country = ?"],
    ),
    PatternRule(
        name="threshold_filter",
        intent=IntentType.FILTER,
        complexity=Complexity.SIMPLE,
        keywords=["greater than", "more than", "above", "over", "less than", "below", "under"],
        patterns=_compile(
            r"(greater\s+than|more\s+than|above|over|>)\s*(\d+)",
            r"(less\s+than|fewer\s+than|below|under|<)\s*(\d+)",
            r"(\w+)\s+(greater\s+than|more\s+than|above|over)\s*(\d+)",
        ),
        operations=["SELECT", "WHERE"],
        confidence=88,
        sql_hints=["WHERE column > value", "WHERE column < value"],
    ),
    PatternRule(
        name="date_filter",
        intent=IntentType.FILTER,
        complexity=Complexity.MEDIUM,
        keywords=["last", "past", "this", "current", "month", "year", "week", "day"],
        patterns=_compile(
            r"(last|past)\s+(month|year|week|day|(\d+)\s+(months|years|weeks|days))",
            r"(this|current)\s+(month|year|week|day)",
            r"in\s+the\s+(last|past)\s+(\d+)\s+(months|years|weeks|days)",
        ),
        operations=["SELECT", "WHERE"],
        confidence=80,
        sql_hints=["WHERE date >= CURRENT_DATE - INTERVAL", "DATE_TRUNC"],
    ),
    PatternRule(
        name="top_n_ranking",
        intent=IntentType.TOP_N,
        complexity=Complexity.MEDIUM,
        keywords=["top", "best", "highest", "largest", "bottom", "worst", "lowest", "smallest"],
        required_keywords=["top", "best", "highest", "largest", "bottom", "worst", "lowest", "smallest"],
        patterns=_compile(
            r"(top|best|highest|largest)\s*(\d+)?\s+(\w+)s?",
            r"(bottom|worst|lowest|smallest)\s*(\d+)?\s+(\w+)s?",
            r"(\d+)\s+(top|best|highest|largest|bottom|worst|lowest|smallest)\s+(\w+)s?",
        ),
        operations=["SELECT", "ORDER BY", "LIMIT"],
        confidence=92,
        sql_hints=["ORDER BY column DESC LIMIT N", "ORDER BY column ASC LIMIT N"],
    ),
    PatternRule(
        name="sum_total",
        intent=IntentType.AGGREGATE,
        complexity=Complexity.MEDIUM,
        keywords=["total", "sum", "revenue", "sales", "amount"],
        patterns=_compile(
            r"(total|sum)\s+(\w+)",
            r"(revenue|sales)\s+(by|per|for)\s+(\w+)",
            r"total\s+(\w+)\s+(by|per|for)\s+(\w+)",
        ),
        operations=["SELECT", "SUM", "GROUP BY"],
        confidence=87,
        sql_hints=["SELECT SUM(column)", "GROUP BY category"],
    ),
    PatternRule(
        name="average_calculation",
        intent=IntentType.AGGREGATE,
        complexity=Complexity.MEDIUM,
        keywords=["average", "avg", "mean"],
        patterns=_compile(
            r"(average|avg|mean)\s+(\w+)",
            r"(average|avg|mean)\s+(\w+)\s+(by|per|for)\s+(\w+)",
        ),
        operations=["SELECT", "AVG", "GROUP BY"],
        confidence=90,
        sql_hints=["SELECT AVG(column)", "GROUP BY category"],
    ),
    PatternRule(
        name="group_by_analysis",
        intent=IntentType.AGGREGATE,
        complexity=Complexity.MEDIUM,
        keywords=["by", "per", "for each", "group by", "breakdown"],
        patterns=_compile(
            r"(\w+)\s+(by|per)\s+(\w+)",
            r"(for\s+each|group\s+by)\s+(\w+)",
            r"breakdown\s+(of\s+)?(\w+)\s+(by|per)\s+(\w+)",
        ),
        operations=["SELECT", "GROUP BY"],
        confidence=85,
        sql_hints=["GROUP BY column", "aggregate functions needed"],
    ),
    PatternRule(
        name="basic_join",
        intent=IntentType.JOIN,
        complexity=Complexity.MEDIUM,
        keywords=["with", "and their", "along with", "including", "together with"],
        patterns=_compile(
            r"(\w+)s?\s+(with|and\s+their|along\s+with|including)\s+(\w+)s?",
            r"(\w+)s?\s+together\s+with\s+(\w+)s?",
        ),
        operations=["SELECT", "JOIN"],
        confidence=80,
        sql_hints=["JOIN table ON foreign_key = primary_key"],
    ),
    PatternRule(
        name="relationship_join",
        intent=IntentType.JOIN,
        complexity=Complexity.MEDIUM,
        keywords=["customers who", "products that", "orders with", "users who have"],
        patterns=_compile(
            r"(\w+)s?\s+who\s+(have|placed|bought|ordered)",
            r"(\w+)s?\s+that\s+(are|were|have|contain)",
            r"(\w+)s?\s+with\s+(\w+)s?",
        ),
        operations=["SELECT", "JOIN", "WHERE"],
        confidence=82,
        sql_hints=["JOIN with WHERE conditions"],
    ),
    PatternRule(
        name="trend_analysis",
        intent=IntentType.ANALYTICS,
        complexity=Complexity.COMPLEX,
        keywords=["trend", "over time", "monthly", "yearly", "growth", "change"],
        patterns=_compile(
            r"(\w+)\s+(trend|over\s+time)",
            r"(monthly|yearly|daily)\s+(\w+)",
            r"(\w+)\s+(growth|change)\s+(over|by)",
        ),
        operations=["SELECT", "GROUP BY", "ORDER BY", "DATE_TRUNC"],
        confidence=75,
        sql_hints=["GROUP BY date period", "ORDER BY date", "time series analysis"],
    ),
    PatternRule(
        name="comparison_analysis",
        intent=IntentType.COMPARISON,
        complexity=Complexity.COMPLEX,
        keywords=["compare", "vs", "versus", "compared to", "difference between"],
        patterns=_compile(
            r"compare\s+(\w+)\s+(vs|versus|to|with)\s+(\w+)",
            r"(\w+)\s+(vs|versus)\s+(\w+)",
            r"difference\s+between\s+(\w+)\s+and\s+(\w+)",
        ),
        operations=["SELECT", "CASE", "UNION", "JOIN"],
        confidence=70,
        sql_hints=["CASE statements", "subqueries for comparison"],
    ),
    PatternRule(
        name="time_series",
        intent=IntentType.TIME_SERIES,
        complexity=Complexity.COMPLEX,
        keywords=["by month", "by year", "by day", "by week", "over time", "time series"],
        patterns=_compile(
            r"(\w+)\s+by\s+(month|year|day|week)",
            r"(\w+)\s+over\s+time",
            r"(monthly|yearly|daily|weekly)\s+(\w+)",
        ),
        operations=["SELECT", "GROUP BY", "DATE_TRUNC", "ORDER BY"],
        confidence=78,
        sql_hints=["DATE_TRUNC for grouping", "ORDER BY date"],
    ),
    PatternRule(
        name="nested_condition",
        intent=IntentType.SUBQUERY,
        complexity=Complexity.COMPLEX,
        keywords=["who have", "that have", "with more than", "with less than", "without"],
        patterns=_compile(
            r"(\w+)s?\s+who\s+have\s+(more\s+than|less\s+than|at\s+least)\s*(\d+)",
            r"(\w+)s?\s+that\s+have\s+(never|not|no)",
            r"(\w+)s?\s+without\s+(\w+)s?",
        ),
        operations=["SELECT", "WHERE", "EXISTS", "NOT EXISTS"],
        confidence=72,
        sql_hints=["subqueries with EXISTS", "correlated subqueries"],
    ),
]


# 没有 Schema 时使用的常见实体映射：词 -> 表名
COMMON_ENTITIES = [
    (("customer", "client"), "customers"),
    (("product", "item"), "products"),
    (("order",), "orders"),
    (("user",), "users"),
    (("category",), "categories"),
    (("payment",), "payments"),
    (("invoice",), "invoices"),
]

# 复杂度评估使用的词表
CONDITION_WORDS = ["where", "and", "or", "having", "case when", "exists"]
ADVANCED_FEATURES = ["join", "group by", "order by", "subquery", "window function"]
TIME_ANALYSIS_WORDS = ["trend", "over time", "monthly", "yearly"]
COMPLEX_INTENTS = {IntentType.ANALYTICS, IntentType.SUBQUERY, IntentType.COMPARISON, IntentType.TIME_SERIES}


class RegexIntentClassifier:
    """基于关键词和正则的意图识别器"""

    def __init__(self, rules: Optional[Sequence[PatternRule]] = None):
        self.rules: List[PatternRule] = list(rules if rules is not None else DEFAULT_RULES)
        logger.info(f"Initialized {len(self.rules)} query pattern recognition rules")

    def classify(self, query: str, schema: Optional[SchemaDescription] = None) -> QueryIntent:
        """识别查询意图"""
        normalized = query.lower().strip()
        entities = self._extract_entities(query, schema)

        matched: List[RecognizedPattern] = []
        matched_rules: List[PatternRule] = []
        operations: List[str] = []
        conditions: List[str] = []

        best_rule: Optional[PatternRule] = None
        best_score = 0.0

        for rule in self.rules:
            score = self.score_rule(normalized, rule)
            if score <= 0:
                continue

            matched.append(RecognizedPattern(
                name=rule.name,
                confidence=score,
                keywords=[kw for kw in rule.keywords if kw in normalized],
                sql_hints=list(rule.sql_hints),
            ))
            matched_rules.append(rule)

            if score > best_score:
                best_score = score
                best_rule = rule

            operations.extend(rule.operations)
            conditions.extend(self._extract_conditions(normalized, rule))

        intent = QueryIntent(
            category=best_rule.intent if best_rule else IntentType.SELECT_ALL,
            complexity=self._assess_complexity(normalized, entities, matched_rules),
            entities=entities,
            operations=_unique(operations),
            conditions=_unique(conditions),
            confidence=best_score,
            patterns=sorted(matched, key=lambda p: p.confidence, reverse=True),
        )

        logger.debug(
            f"Recognized query intent: {intent.category.value} ({intent.complexity.value}) "
            f"with {intent.confidence:.1f}% confidence"
        )
        return intent

    def score_rule(self, query: str, rule: PatternRule) -> float:
        """计算单条规则的匹配得分，未匹配返回 0"""
        if rule.required_keywords and not any(kw in query for kw in rule.required_keywords):
            return 0.0
        if rule.exclude_keywords and any(kw in query for kw in rule.exclude_keywords):
            return 0.0

        keyword_hits = sum(1 for kw in rule.keywords if kw in query)
        pattern_hits = sum(1 for p in rule.patterns if p.search(query))
        if keyword_hits == 0 and pattern_hits == 0:
            return 0.0

        score = (
            keyword_hits / len(rule.keywords) * 40 +
            pattern_hits / len(rule.patterns) * 40 +
            rule.confidence * 0.2
        )
        return min(score, 100.0)

    # ========================================
    # 辅助方法
    # ========================================

    def _extract_entities(self, query: str, schema: Optional[SchemaDescription]) -> List[str]:
        if schema is not None and schema.tables:
            return identify_relevant_tables(query, schema)

        lower_query = query.lower()
        return _unique([
            table for words, table in COMMON_ENTITIES
            if any(word in lower_query for word in words)
        ])

    def _extract_conditions(self, query: str, rule: PatternRule) -> List[str]:
        conditions = []

        if rule.name == "location_filter":
            match = re.search(r"(from|in)\s+([a-zA-Z\s]+)", query)
            if match:
                conditions.append(f"location: {match.group(2).strip()}")

        elif rule.name == "threshold_filter":
            match = re.search(
                r"(greater\s+than|more\s+than|above|over|less\s+than|below|under)\s*(\d+)", query
            )
            if match:
                conditions.append(f"threshold: {match.group(1)} {match.group(2)}")

        elif rule.name == "date_filter":
            match = re.search(
                r"(last|past|this|current)\s+(month|year|week|day|\d+\s+(months|years|weeks|days))", query
            )
            if match:
                conditions.append(f"date: {match.group(1)} {match.group(2)}")

        elif rule.name == "top_n_ranking":
            match = re.search(r"(top|bottom)\s*(\d+)?", query)
            if match:
                conditions.append(f"ranking: {match.group(1)} {match.group(2) or '10'}")

        return conditions

    def _assess_complexity(self, query: str, entities: List[str],
                           matched_rules: List[PatternRule]) -> Complexity:
        """
        复杂度评分：
        - 涉及 3 个以上实体 +2，2 个 +1
        - 每个命中的分析/子查询/对比/时序规则 +1
        - 条件词超过 2 个 +1
        - 每个高级 SQL 特征词 +1
        - 时间分析词 +1
        >= 4 为 complex，>= 2 为 medium
        """
        points = 0

        if len(entities) > 2:
            points += 2
        elif len(entities) > 1:
            points += 1

        points += sum(1 for rule in matched_rules if rule.intent in COMPLEX_INTENTS)

        words = set(query.split())
        condition_count = sum(
            1 for w in CONDITION_WORDS if (w in query if " " in w else w in words)
        )
        if condition_count > 2:
            points += 1

        points += sum(1 for feature in ADVANCED_FEATURES if feature in query)

        if any(w in query for w in TIME_ANALYSIS_WORDS):
            points += 1

        if points >= 4:
            return Complexity.COMPLEX
        if points >= 2:
            return Complexity.MEDIUM
        return Complexity.SIMPLE

    # ========================================
    # 建议与统计
    # ========================================

    def get_handling_suggestions(self, intent: QueryIntent) -> HandlingSuggestions:
        """根据意图给出 SQL 模板、优化建议和注意事项"""
        return get_handling_suggestions(intent)

    def get_pattern_stats(self) -> Dict[str, object]:
        """规则统计"""
        by_type: Dict[str, int] = {}
        by_complexity: Dict[str, int] = {}
        for rule in self.rules:
            by_type[rule.intent.value] = by_type.get(rule.intent.value, 0) + 1
            by_complexity[rule.complexity.value] = by_complexity.get(rule.complexity.value, 0) + 1

        return {
            "total_patterns": len(self.rules),
            "patterns_by_type": by_type,
            "patterns_by_complexity": by_complexity,
        }


_SUGGESTIONS: Dict[IntentType, HandlingSuggestions] = {
    IntentType.SELECT_ALL: HandlingSuggestions(
        sql_template="SELECT columns FROM table ORDER BY column LIMIT N",
        optimizations=["Add LIMIT to prevent large result sets", "Specify columns instead of SELECT *"],
    ),
    IntentType.COUNT: HandlingSuggestions(
        sql_template="SELECT COUNT(*) FROM table WHERE conditions",
        optimizations=["Use COUNT(*) for better performance"],
    ),
    IntentType.FILTER: HandlingSuggestions(
        sql_template="SELECT columns FROM table WHERE conditions ORDER BY column",
        optimizations=["Use indexes on filtered columns", "Use ILIKE for case-insensitive text matching"],
    ),
    IntentType.TOP_N: HandlingSuggestions(
        sql_template="SELECT columns FROM table ORDER BY column DESC LIMIT N",
        optimizations=["Ensure ORDER BY column is indexed"],
        warnings=["Large tables may need optimization"],
    ),
    IntentType.AGGREGATE: HandlingSuggestions(
        sql_template="SELECT column, AGG_FUNC(column) FROM table GROUP BY column",
        optimizations=[
            "Include all non-aggregated columns in GROUP BY",
            "Consider using indexes on GROUP BY columns",
        ],
    ),
    IntentType.JOIN: HandlingSuggestions(
        sql_template="SELECT columns FROM table1 t1 JOIN table2 t2 ON t1.id = t2.foreign_id",
        optimizations=["Use proper foreign key relationships", "Consider JOIN order for performance"],
        warnings=["Verify foreign key relationships exist"],
    ),
    IntentType.ANALYTICS: HandlingSuggestions(
        sql_template="SELECT date_column, AGG_FUNC(column) FROM table GROUP BY date_column ORDER BY date_column",
        optimizations=["Use DATE_TRUNC for time grouping", "Consider partitioning for large time series data"],
        warnings=["Complex analytics may require optimization"],
    ),
    IntentType.TIME_SERIES: HandlingSuggestions(
        sql_template="SELECT DATE_TRUNC('period', date_col), AGG_FUNC(col) FROM table GROUP BY 1 ORDER BY 1",
        optimizations=["Use appropriate date functions for grouping", "Index date columns for better performance"],
    ),
    IntentType.SUBQUERY: HandlingSuggestions(
        sql_template="SELECT columns FROM table WHERE EXISTS (SELECT 1 FROM other_table WHERE condition)",
        optimizations=[
            "Consider JOINs instead of subqueries when possible",
            "Use EXISTS instead of IN for better performance",
        ],
        warnings=["Complex subqueries may impact performance"],
    ),
}


def get_handling_suggestions(intent: QueryIntent) -> HandlingSuggestions:
    template = _SUGGESTIONS.get(intent.category)
    if template is None:
        return HandlingSuggestions()
    return HandlingSuggestions(
        sql_template=template.sql_template,
        optimizations=list(template.optimizations),
        warnings=list(template.warnings),
    )


def _unique(values: List[str]) -> List[str]:
    return list(dict.fromkeys(values))
