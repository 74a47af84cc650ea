"""
模型注册表 - 管理后端模型描述和近期表现

职责：
1. 静态描述：每个后端的专长、支持的方言、先验准确率、成本、延迟、优先级
2. 表现记录：有界环形缓冲区保存最近的 PerformanceSample
3. 打分与选择：按请求上下文为后端打分，给出最佳后端或排序列表

打分规则（score）：
- 基础分 accuracy_prior
- sql 专长且非 analytics 请求 +10；analytics 专长且 analytics 请求 +15
- 该类别近期样本 >= MIN_SAMPLES_FOR_HISTORY 时：
      score = 0.3 * score + 0.4 * 平均准确率 + 0.3 * 平均满意度
  再按平均延迟扣分（> 5000ms -10，> 3000ms -5）
- simple 请求且单次成本 > 0.01 扣 5 分；免费模型 +2
- 重试时 sql 专长模型 +5
"""
import logging
import threading
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from nlsql.core.config import Settings, settings as default_settings
from nlsql.core.exceptions import ConfigurationError
from nlsql.schemas.generation import GenerationContext, QueryCategory

logger = logging.getLogger(__name__)


# ============================================================================
# 数据模型
# ============================================================================

class Specialization(str, Enum):
    """模型专长"""
    GENERAL = "general"
    SQL = "sql"
    ANALYTICS = "analytics"


@dataclass
class ModelDescriptor:
    """后端模型描述"""
    id: str
    name: str
    provider: str                       # 路由到具体调用器，如 openai / rule_based
    specialization: Specialization
    supported_dialects: List[str]
    accuracy_prior: float               # 0-100，随近期表现调整
    cost_per_query: float = 0.0
    average_latency: float = 0.0        # 毫秒
    max_context_length: Optional[int] = None   # None 表示不限
    priority: int = 100                 # 数值越小越优先（同分时）
    is_configured: bool = False
    model_name: str = ""                # Provider 侧的模型名称

    def supports(self, dialect: str) -> bool:
        return dialect.lower() in (d.lower() for d in self.supported_dialects)


@dataclass
class PerformanceSample:
    """一次生成的表现记录"""
    model_id: str
    query_category: str
    accuracy: float                     # 0-100，成功时取校验置信度
    latency: float                      # 毫秒
    user_satisfaction: Optional[float] = None   # 用户反馈前为 None
    error_flag: bool = False
    timestamp: datetime = field(default_factory=datetime.now)
    query_id: Optional[str] = None


SampleSink = Callable[[PerformanceSample], None]


# ============================================================================
# 默认模型目录
# ============================================================================

_GENERAL_DIALECTS = ["postgresql", "mysql", "sqlite"]


def default_model_catalog(settings: Optional[Settings] = None) -> List[ModelDescriptor]:
    """默认后端目录，就绪状态由对应 API Key 是否配置决定"""
    cfg = settings or default_settings
    has_openai = bool(cfg.OPENAI_API_KEY)
    has_hf = bool(cfg.HUGGING_FACE_API_KEY)

    return [
        ModelDescriptor(
            id="gpt-4", name="OpenAI GPT-4", provider="openai",
            specialization=Specialization.GENERAL,
            supported_dialects=_GENERAL_DIALECTS + ["mssql"],
            accuracy_prior=95, cost_per_query=0.03, average_latency=2000,
            max_context_length=8192, priority=1, is_configured=has_openai,
            model_name="gpt-4",
        ),
        ModelDescriptor(
            id="gpt-3.5-turbo", name="OpenAI GPT-3.5-Turbo", provider="openai",
            specialization=Specialization.GENERAL,
            supported_dialects=_GENERAL_DIALECTS + ["mssql"],
            accuracy_prior=90, cost_per_query=0.002, average_latency=1500,
            max_context_length=4096, priority=2, is_configured=has_openai,
            model_name="gpt-3.5-turbo",
        ),
        ModelDescriptor(
            id="claude-3-sonnet", name="Anthropic Claude", provider="anthropic",
            specialization=Specialization.GENERAL,
            supported_dialects=list(_GENERAL_DIALECTS),
            accuracy_prior=92, cost_per_query=0.015, average_latency=2500,
            max_context_length=200000, priority=3,
            is_configured=bool(cfg.ANTHROPIC_API_KEY),
            model_name="claude-3-sonnet-20240229",
        ),
        ModelDescriptor(
            id="gemini-pro", name="Google Gemini", provider="google",
            specialization=Specialization.GENERAL,
            supported_dialects=list(_GENERAL_DIALECTS),
            accuracy_prior=88, cost_per_query=0.001, average_latency=2000,
            max_context_length=30720, priority=4,
            is_configured=bool(cfg.GOOGLE_API_KEY),
            model_name="gemini-pro",
        ),
        ModelDescriptor(
            id="sqlcoder-7b", name="Hugging Face SQLCoder", provider="huggingface",
            specialization=Specialization.SQL,
            supported_dialects=list(_GENERAL_DIALECTS),
            accuracy_prior=85, cost_per_query=0, average_latency=3000,
            max_context_length=2048, priority=5, is_configured=has_hf,
            model_name="defog/sqlcoder-7b-2",
        ),
        ModelDescriptor(
            id="duckdb-nsql", name="Hugging Face DuckDB-NSQL", provider="huggingface",
            specialization=Specialization.SQL,
            supported_dialects=_GENERAL_DIALECTS + ["duckdb"],
            accuracy_prior=83, cost_per_query=0, average_latency=3500,
            max_context_length=2048, priority=6, is_configured=has_hf,
            model_name="motherduckdb/DuckDB-NSQL-7B-v0.1",
        ),
        ModelDescriptor(
            id="codet5-plus", name="Hugging Face CodeT5+", provider="huggingface",
            specialization=Specialization.GENERAL,
            supported_dialects=list(_GENERAL_DIALECTS),
            accuracy_prior=80, cost_per_query=0, average_latency=2500,
            max_context_length=1024, priority=7, is_configured=has_hf,
            model_name="Salesforce/codet5p-220m",
        ),
        ModelDescriptor(
            id="cohere-command", name="Cohere Command", provider="cohere",
            specialization=Specialization.GENERAL,
            supported_dialects=list(_GENERAL_DIALECTS),
            accuracy_prior=85, cost_per_query=0.001, average_latency=2000,
            max_context_length=4096, priority=8,
            is_configured=bool(cfg.COHERE_API_KEY),
            model_name="command",
        ),
        # 规则兜底，始终可用，优先级最低
        ModelDescriptor(
            id="rule-based", name="Rule-based Fallback", provider="rule_based",
            specialization=Specialization.GENERAL,
            supported_dialects=list(_GENERAL_DIALECTS),
            accuracy_prior=70, cost_per_query=0, average_latency=100,
            max_context_length=None, priority=99, is_configured=True,
        ),
    ]


# ============================================================================
# 模型注册表
# ============================================================================

class ModelRegistry:
    """后端描述 + 表现记录 + 打分选择"""

    def __init__(self, descriptors: Optional[Iterable[ModelDescriptor]] = None,
                 settings: Optional[Settings] = None,
                 sample_sink: Optional[SampleSink] = None):
        self.settings = settings or default_settings
        self._models: Dict[str, ModelDescriptor] = {}
        self._samples: deque = deque(maxlen=self.settings.PERFORMANCE_HISTORY_LIMIT)
        self._lock = threading.Lock()
        self.sample_sink = sample_sink

        for descriptor in (descriptors if descriptors is not None else default_model_catalog(self.settings)):
            self.register(descriptor)

    # ========================================
    # 描述管理
    # ========================================

    def register(self, descriptor: ModelDescriptor) -> None:
        """注册（或替换）一个后端描述"""
        self._models[descriptor.id] = descriptor
        logger.debug(f"Registered model: {descriptor.id} (configured={descriptor.is_configured})")

    def get(self, model_id: str) -> Optional[ModelDescriptor]:
        return self._models.get(model_id)

    def all_models(self) -> List[ModelDescriptor]:
        return list(self._models.values())

    def get_available_models(self) -> List[ModelDescriptor]:
        """已配置的后端"""
        return [m for m in self._models.values() if m.is_configured]

    # ========================================
    # 打分与选择
    # ========================================

    def score(self, descriptor: ModelDescriptor, context: GenerationContext) -> float:
        """按请求上下文为后端打分，分数越高越好"""
        category = context.query_category
        score = float(descriptor.accuracy_prior)

        if descriptor.specialization == Specialization.SQL and category != QueryCategory.ANALYTICS:
            score += 10
        elif descriptor.specialization == Specialization.ANALYTICS and category == QueryCategory.ANALYTICS:
            score += 15

        recent = self.recent_performance(descriptor.id, category.value)
        if len(recent) >= self.settings.MIN_SAMPLES_FOR_HISTORY:
            avg_accuracy = sum(s.accuracy for s in recent) / len(recent)
            avg_latency = sum(s.latency for s in recent) / len(recent)
            avg_satisfaction = sum(s.user_satisfaction or 0.0 for s in recent) / len(recent)

            score = score * 0.3 + avg_accuracy * 0.4 + avg_satisfaction * 0.3

            if avg_latency > 5000:
                score -= 10
            elif avg_latency > 3000:
                score -= 5

        if category == QueryCategory.SIMPLE and descriptor.cost_per_query > 0.01:
            score -= 5

        if descriptor.cost_per_query == 0:
            score += 2

        if context.retry_attempt > 0 and descriptor.specialization == Specialization.SQL:
            score += 5

        return score

    def eligible(self, context: GenerationContext, exclude: Sequence[str] = ()) -> List[ModelDescriptor]:
        """已配置、支持方言且未被排除的后端"""
        excluded = set(exclude)
        return [
            m for m in self._models.values()
            if m.is_configured and m.supports(context.dialect) and m.id not in excluded
        ]

    def ensure_dialect_supported(self, dialect: str) -> None:
        """没有任何已配置后端支持该方言时抛出 ConfigurationError"""
        if not any(m.is_configured and m.supports(dialect) for m in self._models.values()):
            raise ConfigurationError(dialect)

    def rank_backends(self, context: GenerationContext, exclude: Sequence[str] = (),
                      limit: Optional[int] = None) -> List[ModelDescriptor]:
        """
        按得分降序排列可用后端

        同分时 priority 小者优先，再按 ID 排序。
        """
        self.ensure_dialect_supported(context.dialect)
        scored = [(self.score(m, context), m) for m in self.eligible(context, exclude)]
        scored.sort(key=lambda item: (-item[0], item[1].priority, item[1].id))
        ranked = [m for _, m in scored]
        return ranked[:limit] if limit is not None else ranked

    def select_best(self, context: GenerationContext,
                    exclude: Sequence[str] = ()) -> Optional[ModelDescriptor]:
        """
        选择最佳后端

        Raises:
            ConfigurationError: 没有任何已配置后端支持该方言

        Returns:
            最佳后端；所有可用后端都被排除时返回 None
        """
        ranked = self.rank_backends(context, exclude, limit=1)
        if not ranked:
            return None
        logger.debug(
            f"Selected model {ranked[0].id} for {context.query_category.value} query "
            f"(attempt {context.retry_attempt})"
        )
        return ranked[0]

    # ========================================
    # 表现记录
    # ========================================

    def record_performance(self, sample: PerformanceSample) -> None:
        """
        记录一次表现

        近期样本（不分类别）达到 MIN_SAMPLES_FOR_HISTORY 后，
        先验准确率调整为 round(0.7 * prior + 0.3 * 近期平均准确率)。
        """
        descriptor = self._models.get(sample.model_id)
        # 追加与先验调整在同一把锁内完成
        with self._lock:
            self._samples.append(sample)
            if descriptor is not None:
                recent = self._recent_samples(sample.model_id)
                if len(recent) >= self.settings.MIN_SAMPLES_FOR_HISTORY:
                    avg_accuracy = sum(s.accuracy for s in recent) / len(recent)
                    descriptor.accuracy_prior = round(descriptor.accuracy_prior * 0.7 + avg_accuracy * 0.3)

        logger.debug(
            f"Recorded performance for {sample.model_id}: accuracy={sample.accuracy:.1f}, "
            f"latency={sample.latency:.0f}ms, error={sample.error_flag}"
        )

        if self.sample_sink is not None:
            try:
                self.sample_sink(sample)
            except Exception as e:
                logger.warning(f"Performance sample sink failed for {sample.model_id}: {e}")

    def recent_performance(self, model_id: str,
                           category: Optional[str] = None) -> List[PerformanceSample]:
        """窗口期内最近的样本（最多 RECENT_SAMPLE_LIMIT 条）"""
        with self._lock:
            return self._recent_samples(model_id, category)

    def _recent_samples(self, model_id: str,
                        category: Optional[str] = None) -> List[PerformanceSample]:
        """调用方需持有 self._lock"""
        cutoff = datetime.now() - timedelta(days=self.settings.PERFORMANCE_WINDOW_DAYS)
        matching = [
            s for s in self._samples
            if s.model_id == model_id
            and s.timestamp >= cutoff
            and (category is None or s.query_category == category)
        ]
        return matching[-self.settings.RECENT_SAMPLE_LIMIT:]

    def update_user_satisfaction(self, model_id: str, category: str,
                                 satisfaction: float) -> bool:
        """更新该模型该类别最近一条样本的用户满意度"""
        with self._lock:
            latest = next(
                (s for s in reversed(self._samples)
                 if s.model_id == model_id and s.query_category == category),
                None,
            )
            if latest is not None:
                latest.user_satisfaction = satisfaction

        if latest is None:
            logger.warning(f"No performance sample to update for {model_id}/{category}")
            return False
        return True

    def samples(self) -> List[PerformanceSample]:
        """样本快照（副本）"""
        with self._lock:
            return [replace(s) for s in self._samples]

    def get_model_stats(self, model_id: str) -> Dict[str, float]:
        """模型累计统计"""
        with self._lock:
            samples = [s for s in self._samples if s.model_id == model_id]

        if not samples:
            return {
                "total_queries": 0,
                "average_accuracy": 0.0,
                "average_latency": 0.0,
                "error_rate": 0.0,
            }

        return {
            "total_queries": len(samples),
            "average_accuracy": sum(s.accuracy for s in samples) / len(samples),
            "average_latency": sum(s.latency for s in samples) / len(samples),
            "error_rate": sum(1 for s in samples if s.error_flag) / len(samples),
        }
