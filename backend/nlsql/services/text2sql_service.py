"""
Text2SQL 服务 - 对外的统一入口

生成流程：
1. 意图识别（IntentClassifier）
2. 示例检索：按意图给出偏好模式，选出 Few-shot 示例
3. 构建 GenerationContext
4. 复杂查询且请求开启集成时走集成模式，否则走回退链
5. 计算综合置信度并返回 Text2SQLResponse（附 query_id，用于后续反馈）

反馈流程：
- 示例：update_quality 更新使用次数、成功率和质量分
- 模型：update_user_satisfaction 写回最近一条表现样本
"""
import logging
import re
import uuid
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence, Tuple

from nlsql.core.context import AppContext
from nlsql.schemas.example import Complexity, Example, PatternCategory, PatternTag
from nlsql.schemas.generation import GenerationContext, GenerationResult
from nlsql.schemas.text2sql import (
    EnsembleInfo,
    FeedbackRequest,
    IntentSummary,
    Text2SQLRequest,
    Text2SQLResponse,
)
from nlsql.services.example_retrieval import (
    extract_keywords,
    extract_tables_from_sql,
    generate_example_id,
)
from nlsql.services.intent import QueryIntent
from nlsql.services.intent.base import ANALYTICS_INTENTS

logger = logging.getLogger(__name__)


# SQL 片段 -> 示例标签中的操作名
_SQL_OPERATIONS = [
    (r'\bjoin\b', "JOIN"),
    (r'\bwhere\b', "WHERE"),
    (r'\bgroup\s+by\b', "GROUP BY"),
    (r'\bhaving\b', "HAVING"),
    (r'\border\s+by\b', "ORDER BY"),
    (r'\blimit\b', "LIMIT"),
    (r'\bcount\s*\(', "COUNT"),
    (r'\bsum\s*\(', "SUM"),
    (r'\bavg\s*\(', "AVG"),
    (r'\bover\s*\(', "WINDOW"),
    (r'\(\s*select\b', "SUBQUERY"),
]


def calculate_final_confidence(model_confidence: float, validation_confidence: float,
                               complexity: Complexity,
                               consensus_score: Optional[float] = None) -> float:
    """
    综合置信度

    0.4 * 模型置信度 + 0.4 * 校验置信度；
    有共识分时再按 0.7 / 0.3 与共识分加权，否则乘 0.8；
    simple +5，complex -5，结果取整并限制在 0-100。
    """
    confidence = model_confidence * 0.4 + validation_confidence * 0.4

    if consensus_score is not None:
        confidence = confidence * 0.7 + consensus_score * 0.3
    else:
        confidence = confidence * 0.8

    if complexity == Complexity.SIMPLE:
        confidence += 5
    elif complexity == Complexity.COMPLEX:
        confidence -= 5

    return float(max(0, min(100, round(confidence))))


class Text2SQLService:
    """自然语言转 SQL 服务"""

    def __init__(self, context: AppContext):
        self.ctx = context
        # query_id -> (模型 ID, 请求类别)，用于反馈时定位表现样本
        self._query_log: "OrderedDict[str, Tuple[str, str]]" = OrderedDict()
        self._query_log_limit = context.settings.PERFORMANCE_HISTORY_LIMIT

    # ========================================
    # 生成
    # ========================================

    async def generate(self, request: Text2SQLRequest) -> Text2SQLResponse:
        """
        生成 SQL

        集成模式的推荐结果仍有语法错误时，带着错误信息再走一次回退链。

        Raises:
            ConfigurationError: 没有已配置后端支持请求的方言
            RetryBudgetExhausted: 回退链用尽
            EnsembleTotalFailure: 集成模式下所有后端调用均失败
        """
        schema = request.schema_description
        intent = self.ctx.classifier.classify(request.user_query, schema)
        logger.info(
            f"Detected intent: {intent.category.value} ({intent.complexity.value}), "
            f"confidence={intent.confidence:.0f}"
        )

        examples = self.ctx.retrieval.select_examples(
            request.user_query,
            schema,
            max_examples=request.max_examples,
            preferred_patterns=intent.preferred_pattern_keys,
        )

        context = GenerationContext(
            user_query=request.user_query,
            schema=schema,
            query_category=intent.generation_category,
            dialect=request.dialect or self.ctx.settings.DEFAULT_SQL_DIALECT,
            examples=examples,
        )

        ensemble_info: Optional[EnsembleInfo] = None
        if self._should_use_ensemble(request, intent):
            ensemble = await self.ctx.orchestrator.generate_with_ensemble(context)
            result = ensemble.recommended_result
            ensemble_info = EnsembleInfo(
                consensus_score=ensemble.consensus_score,
                models_used=ensemble.models_used,
            )
            if result.validation_result is not None and result.validation_result.has_syntax_errors:
                # 推荐结果仍有语法错误：带着错误信息走一次回退链
                previous_error = ", ".join(result.validation_result.syntax_errors)
                logger.warning(f"Ensemble result from {result.model_used} failed validation, retrying: {previous_error}")
                result = await self.ctx.orchestrator.generate_with_fallback(
                    context.for_retry(1, previous_error)
                )
                ensemble_info = None
        else:
            result = await self.ctx.orchestrator.generate_with_fallback(context)

        confidence = calculate_final_confidence(
            result.confidence,
            result.validation_confidence,
            intent.complexity,
            ensemble_info.consensus_score if ensemble_info else None,
        )

        query_id = str(uuid.uuid4())
        self._remember_query(query_id, result, context)

        logger.info(f"Query {query_id} answered by {result.model_used} with confidence {confidence:.0f}")
        return Text2SQLResponse.from_result(
            query_id=query_id,
            result=result,
            confidence=confidence,
            intent=_summarize_intent(intent),
            examples=examples,
            ensemble_info=ensemble_info,
        )

    def _should_use_ensemble(self, request: Text2SQLRequest, intent: QueryIntent) -> bool:
        return (
            request.use_ensemble
            and self.ctx.settings.ENSEMBLE_ENABLED
            and intent.complexity == Complexity.COMPLEX
        )

    def _remember_query(self, query_id: str, result: GenerationResult,
                        context: GenerationContext) -> None:
        self._query_log[query_id] = (result.model_used, context.query_category.value)
        while len(self._query_log) > self._query_log_limit:
            self._query_log.popitem(last=False)

    # ========================================
    # 反馈
    # ========================================

    def record_feedback(self, query_id: str, example_ids: Sequence[str],
                        was_successful: bool, satisfaction: Optional[float] = None) -> Dict[str, object]:
        """
        记录用户反馈

        satisfaction 超出 0-100 时截断到边界。

        Returns:
            更新了哪些示例、是否写回了模型满意度
        """
        updated: List[str] = []
        for example_id in example_ids:
            if self.ctx.retrieval.update_quality(example_id, was_successful) is not None:
                updated.append(example_id)

        satisfaction_recorded = False
        if satisfaction is not None:
            satisfaction = max(0.0, min(100.0, float(satisfaction)))
            entry = self._query_log.get(query_id)
            if entry is None:
                logger.warning(f"Unknown query_id for feedback: {query_id}")
            else:
                model_id, category = entry
                satisfaction_recorded = self.ctx.registry.update_user_satisfaction(
                    model_id, category, satisfaction
                )

        logger.info(
            f"Feedback for {query_id}: success={was_successful}, "
            f"examples updated={len(updated)}, satisfaction recorded={satisfaction_recorded}"
        )
        return {"updated_examples": updated, "satisfaction_recorded": satisfaction_recorded}

    def submit_feedback(self, feedback: FeedbackRequest) -> Dict[str, object]:
        return self.record_feedback(
            feedback.query_id, feedback.example_ids, feedback.was_successful, feedback.satisfaction
        )

    # ========================================
    # 示例维护
    # ========================================

    def add_curated_example(self, natural_language: str, sql: str, explanation: str = "",
                            category: Optional[PatternCategory] = None,
                            complexity: Optional[Complexity] = None,
                            schema_context: str = "",
                            quality_score: float = 85.0,
                            tags: Optional[List[str]] = None) -> Example:
        """
        添加一条精选示例

        未指定类别/复杂度时由意图识别推断；表名从 SQL 中提取。
        """
        intent = self.ctx.classifier.classify(natural_language)

        if category is None:
            category = _example_category_for(intent)
        if complexity is None:
            complexity = intent.complexity

        example = Example(
            id=generate_example_id(),
            natural_language=natural_language,
            sql=sql,
            explanation=explanation,
            schema_context=schema_context,
            pattern=PatternTag(
                category=category,
                complexity=complexity,
                tables=extract_tables_from_sql(sql),
                operations=[name for regex, name in _SQL_OPERATIONS if re.search(regex, sql, re.IGNORECASE)],
                keywords=extract_keywords(natural_language),
            ),
            quality_score=quality_score,
            tags=tags or [],
        )
        self.ctx.retrieval.add_example(example)
        logger.info(f"Added curated example {example.id} ({category.value}/{complexity.value})")
        return example


def _example_category_for(intent: QueryIntent) -> PatternCategory:
    if intent.category in ANALYTICS_INTENTS:
        return PatternCategory.ANALYTICS
    return PatternCategory(intent.category.value)


def _summarize_intent(intent: QueryIntent) -> IntentSummary:
    return IntentSummary(
        category=intent.category.value,
        complexity=intent.complexity,
        generation_category=intent.generation_category,
        confidence=intent.confidence,
        entities=intent.entities,
        conditions=intent.conditions,
    )
