"""
生成编排器 - 回退链与集成模式

回退链（generate_with_fallback）：
1. 先检查方言：没有任何已配置后端支持时直接抛出 ConfigurationError，不重试
2. 最多 MAX_FALLBACK_ATTEMPTS 次尝试，每次选择尚未尝试过的最佳后端
3. 调用失败/超时 -> BackendInvocationFailure；SQL 有语法错误 -> ValidationFailure
   两者都记录错误样本，并把错误信息作为 previous_error 传给下一次尝试
4. 全部失败 -> RetryBudgetExhausted

集成模式（generate_with_ensemble）：
1. 选出得分最高的 ENSEMBLE_SIZE 个后端并发调用（asyncio.gather + return_exceptions）
2. 调用失败的后端只记录日志并排除，全部调用失败 -> EnsembleTotalFailure
   返回了 SQL 的后端都保留（附校验结果），语法错误由推荐分数中的校验置信度体现
3. 结果按后端排名排序（与完成先后无关），计算共识分数并推荐最佳结果
"""
import asyncio
import inspect
import logging
import time
from typing import Any, List, Optional, Sequence, Tuple

from nlsql.core.config import Settings, settings as default_settings
from nlsql.core.exceptions import (
    BackendInvocationFailure,
    EnsembleTotalFailure,
    RetryBudgetExhausted,
    ValidationFailure,
)
from nlsql.core.llm_wrapper import LLMErrorType, classify_error
from nlsql.core.model_registry import ModelDescriptor, ModelRegistry, PerformanceSample
from nlsql.schemas.generation import (
    BackendOutput,
    EnsembleResult,
    GenerationContext,
    GenerationResult,
    ValidationResult,
)
from .invokers import BackendInvoker

logger = logging.getLogger(__name__)


class GenerationOrchestrator:
    """模型选择 + 回退 + 集成"""

    def __init__(self, registry: ModelRegistry, invoker: BackendInvoker, validator: Any,
                 settings: Optional[Settings] = None):
        """
        Args:
            registry: 模型注册表
            invoker: 后端调用器
            validator: 提供 validate(sql, schema) 的对象，同步或异步均可
            settings: 配置，默认使用全局 settings
        """
        self.registry = registry
        self.invoker = invoker
        self.validator = validator
        self.settings = settings or default_settings

    # ========================================
    # 回退链
    # ========================================

    async def generate_with_fallback(self, context: GenerationContext) -> GenerationResult:
        """按得分依次尝试后端，直到生成通过语法校验的 SQL"""
        self.registry.ensure_dialect_supported(context.dialect)

        attempted: List[str] = []
        # 调用方可能已带着上一轮的错误进入回退链
        last_error: Optional[str] = context.previous_error

        for attempt in range(self.settings.MAX_FALLBACK_ATTEMPTS):
            retry_context = context.for_retry(context.retry_attempt + attempt, last_error)

            descriptor = self.registry.select_best(retry_context, exclude=attempted)
            if descriptor is None:
                logger.warning(f"No more models available for fallback after {attempted}")
                break
            attempted.append(descriptor.id)

            try:
                result = await self._generate_once(descriptor, retry_context)
            except (BackendInvocationFailure, ValidationFailure) as e:
                last_error = str(e)
                logger.warning(f"Model attempt {attempt + 1} ({descriptor.id}) failed: {last_error}")
                continue

            result.attempts = list(attempted)
            logger.info(
                f"Generated SQL with {descriptor.id} on attempt {attempt + 1} "
                f"in {result.generation_time_ms:.0f}ms"
            )
            return result

        logger.error(f"All fallback attempts failed (attempted: {attempted}). Last error: {last_error}")
        raise RetryBudgetExhausted(attempted, last_error)

    async def _generate_once(self, descriptor: ModelDescriptor,
                             context: GenerationContext) -> GenerationResult:
        """回退链中的一次生成：SQL 有语法错误时抛出 ValidationFailure"""
        result = await self._invoke_and_validate(descriptor, context)
        if result.validation_result.has_syntax_errors:
            raise ValidationFailure(descriptor.id, result.validation_result.syntax_errors)
        return result

    async def _invoke_and_validate(self, descriptor: ModelDescriptor,
                                   context: GenerationContext) -> GenerationResult:
        """
        调用 -> 校验 -> 记录表现

        语法错误不抛异常，只记为错误样本，校验结果附在返回值上。
        """
        output, elapsed_ms = await self._invoke(descriptor, context)
        validation = await self._validate(output.sql, context)

        self._record(descriptor, context, validation.confidence, elapsed_ms,
                     error=validation.has_syntax_errors)
        return GenerationResult(
            sql=output.sql,
            explanation=output.explanation,
            confidence=output.confidence,
            model_used=descriptor.id,
            generation_time_ms=elapsed_ms,
            validation_result=validation,
            attempts=[descriptor.id],
        )

    async def _invoke(self, descriptor: ModelDescriptor,
                      context: GenerationContext) -> Tuple[BackendOutput, float]:
        """调用后端（带超时），任何异常都转换为 BackendInvocationFailure"""
        timeout = self.settings.BACKEND_CALL_TIMEOUT or None
        start = time.perf_counter()
        try:
            output = await asyncio.wait_for(self.invoker.invoke(descriptor, context), timeout=timeout)
        except asyncio.TimeoutError as e:
            elapsed_ms = (time.perf_counter() - start) * 1000
            self._record(descriptor, context, 0.0, elapsed_ms, error=True)
            raise BackendInvocationFailure(
                descriptor.id, f"timed out after {timeout}s", LLMErrorType.TIMEOUT
            ) from e
        except Exception as e:
            elapsed_ms = (time.perf_counter() - start) * 1000
            self._record(descriptor, context, 0.0, elapsed_ms, error=True)
            raise BackendInvocationFailure(descriptor.id, str(e) or type(e).__name__, classify_error(e)) from e

        return output, (time.perf_counter() - start) * 1000

    async def _validate(self, sql: str, context: GenerationContext) -> ValidationResult:
        result = self.validator.validate(sql, context.schema_description)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _record(self, descriptor: ModelDescriptor, context: GenerationContext,
                accuracy: float, latency_ms: float, error: bool) -> None:
        self.registry.record_performance(PerformanceSample(
            model_id=descriptor.id,
            query_category=context.query_category.value,
            accuracy=accuracy,
            latency=latency_ms,
            error_flag=error,
        ))

    # ========================================
    # 集成模式
    # ========================================

    async def generate_with_ensemble(self, context: GenerationContext) -> EnsembleResult:
        """并发调用多个后端并综合结果"""
        backends = self.registry.rank_backends(context, limit=self.settings.ENSEMBLE_SIZE)
        model_ids = [b.id for b in backends]
        logger.info(f"Running ensemble with models: {model_ids}")

        outcomes = await asyncio.gather(
            *[self._invoke_and_validate(b, context) for b in backends],
            return_exceptions=True,
        )

        results: List[GenerationResult] = []
        errors = {}
        for descriptor, outcome in zip(backends, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                errors[descriptor.id] = str(outcome)
                logger.warning(f"Ensemble model {descriptor.id} failed: {outcome}")
                continue
            outcome.attempts = list(model_ids)
            results.append(outcome)

        if not results:
            logger.error(f"All ensemble models failed: {errors}")
            raise EnsembleTotalFailure(model_ids, errors)

        consensus = calculate_consensus([r.sql for r in results])
        recommended = select_recommended(results)

        for result in results:
            result.alternatives = [r.sql for r in results if r is not result]

        logger.info(
            f"Ensemble finished: {len(results)}/{len(backends)} returned SQL, "
            f"consensus={consensus:.1f}, recommended={recommended.model_used}"
        )
        return EnsembleResult(
            primary_result=results[0],
            alternative_results=results[1:],
            consensus_score=consensus,
            recommended_result=recommended,
        )


# ============================================================================
# 共识与推荐
# ============================================================================

def normalize_sql(sql: str) -> str:
    """小写并合并空白"""
    return " ".join(sql.lower().split())


def levenshtein_distance(left: str, right: str) -> int:
    """编辑距离（两行滚动数组）"""
    if len(left) < len(right):
        left, right = right, left
    previous = list(range(len(right) + 1))
    for i, lc in enumerate(left, 1):
        current = [i]
        for j, rc in enumerate(right, 1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (lc != rc),
            ))
        previous = current
    return previous[-1]


def sql_similarity(left: str, right: str) -> float:
    """1 - 编辑距离 / 较长字符串长度，作用于规范化后的 SQL"""
    a, b = normalize_sql(left), normalize_sql(right)
    if a == b:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / max(len(a), len(b))


def calculate_consensus(sqls: Sequence[str]) -> float:
    """两两相似度的平均值 * 100；少于两个结果时为 100"""
    if len(sqls) < 2:
        return 100.0
    similarities = [
        sql_similarity(sqls[i], sqls[j])
        for i in range(len(sqls))
        for j in range(i + 1, len(sqls))
    ]
    return sum(similarities) / len(similarities) * 100


def select_recommended(results: Sequence[GenerationResult]) -> GenerationResult:
    """0.7 * 模型置信度 + 0.3 * 校验置信度 最高者，同分取靠前的"""
    best = results[0]
    best_score = _recommendation_score(best)
    for result in results[1:]:
        score = _recommendation_score(result)
        if score > best_score:
            best, best_score = result, score
    return best


def _recommendation_score(result: GenerationResult) -> float:
    return result.confidence * 0.7 + result.validation_confidence * 0.3
