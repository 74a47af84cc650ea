"""
模型注册表测试

覆盖打分规则、选择、表现记录（环形缓冲区、先验调整、满意度回写）。
"""
import threading
from unittest.mock import MagicMock

import pytest

from nlsql.core.exceptions import ConfigurationError
from nlsql.core.model_registry import (
    ModelRegistry,
    PerformanceSample,
    Specialization,
    default_model_catalog,
)
from nlsql.schemas.generation import GenerationContext, QueryCategory
from conftest import make_descriptor


def _context(category=QueryCategory.SIMPLE, dialect="postgresql", retry_attempt=0):
    return GenerationContext(
        user_query="list customers",
        query_category=category,
        dialect=dialect,
        retry_attempt=retry_attempt,
    )


def _sample(model_id, accuracy=90.0, latency=1000.0, category="simple", **kwargs):
    return PerformanceSample(
        model_id=model_id, query_category=category, accuracy=accuracy, latency=latency, **kwargs
    )


class TestScoring:
    """打分规则"""

    def test_free_backend_ranks_higher_for_simple(self, test_settings):
        """先验相同时，免费后端在 simple 请求中排名更高"""
        paid = make_descriptor("paid", accuracy_prior=85, cost=0.03, priority=1)
        free = make_descriptor("free", accuracy_prior=85, cost=0.0, priority=2)
        registry = ModelRegistry([paid, free], settings=test_settings)

        context = _context()
        assert registry.score(free, context) > registry.score(paid, context)
        assert registry.select_best(context).id == "free"

    def test_specialization_bonus(self, test_settings):
        registry = ModelRegistry([], settings=test_settings)
        sql_model = make_descriptor("sql", accuracy_prior=80, specialization=Specialization.SQL, cost=0.005)
        analytics_model = make_descriptor(
            "analytics", accuracy_prior=80, specialization=Specialization.ANALYTICS, cost=0.005
        )

        assert registry.score(sql_model, _context(QueryCategory.COMPLEX)) == 90
        assert registry.score(sql_model, _context(QueryCategory.ANALYTICS)) == 80
        assert registry.score(analytics_model, _context(QueryCategory.ANALYTICS)) == 95

    def test_retry_prefers_sql_specialists(self, test_settings):
        registry = ModelRegistry([], settings=test_settings)
        sql_model = make_descriptor("sql", accuracy_prior=80, specialization=Specialization.SQL, cost=0.005)

        first = registry.score(sql_model, _context(QueryCategory.COMPLEX, retry_attempt=0))
        retry = registry.score(sql_model, _context(QueryCategory.COMPLEX, retry_attempt=1))
        assert retry - first == 5

    def test_poor_history_demotes_backend(self, registry):
        """近期表现差的后端会被降级"""
        for _ in range(10):
            registry.record_performance(_sample("alpha", accuracy=0, latency=6000))

        best = registry.select_best(_context())
        assert best.id == "beta"

    def test_ties_broken_by_priority_then_id(self, test_settings):
        registry = ModelRegistry([
            make_descriptor("b", priority=1),
            make_descriptor("a", priority=1),
            make_descriptor("c", priority=0),
        ], settings=test_settings)

        assert [m.id for m in registry.rank_backends(_context())] == ["c", "a", "b"]


class TestSelection:
    """后端选择"""

    def test_exclude_and_exhaustion(self, registry):
        context = _context()
        assert registry.select_best(context, exclude=["alpha"]).id == "beta"
        assert registry.select_best(context, exclude=["alpha", "beta", "gamma"]) is None

    def test_unconfigured_and_unsupported_are_skipped(self, test_settings):
        registry = ModelRegistry([
            make_descriptor("offline", accuracy_prior=99, configured=False),
            make_descriptor("mysql_only", accuracy_prior=98, dialects=("mysql",)),
            make_descriptor("online", accuracy_prior=50),
        ], settings=test_settings)

        assert registry.select_best(_context()).id == "online"

    def test_unsupported_dialect_raises_configuration_error(self, registry):
        with pytest.raises(ConfigurationError) as exc_info:
            registry.select_best(_context(dialect="oracle"))
        assert exc_info.value.dialect == "oracle"

    def test_rank_backends_limit(self, registry):
        assert [m.id for m in registry.rank_backends(_context(), limit=2)] == ["alpha", "beta"]


class TestPerformanceRecording:
    """表现记录"""

    def test_ring_buffer_cap(self, make_settings, three_backends):
        registry = ModelRegistry(three_backends, settings=make_settings(PERFORMANCE_HISTORY_LIMIT=5))
        for i in range(8):
            registry.record_performance(_sample("alpha", query_id=f"q{i}"))

        samples = registry.samples()
        assert len(samples) == 5
        assert samples[0].query_id == "q3"

    def test_concurrent_appends_are_safe(self, make_settings, three_backends):
        """多线程同时写入：样本不丢失、缓冲区上限不被突破、先验调整不错乱"""
        registry = ModelRegistry(three_backends, settings=make_settings(PERFORMANCE_HISTORY_LIMIT=300))
        barrier = threading.Barrier(8)

        def writer(worker):
            barrier.wait()
            for i in range(50):
                registry.record_performance(_sample("alpha", accuracy=90, query_id=f"w{worker}-{i}"))

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        samples = registry.samples()
        assert len(samples) == 300
        assert len({s.query_id for s in samples}) == 300
        assert registry.get("alpha").accuracy_prior == 90

    def test_prior_adjusted_after_enough_samples(self, registry):
        alpha = registry.get("alpha")
        for _ in range(9):
            registry.record_performance(_sample("alpha", accuracy=50))
        assert alpha.accuracy_prior == 90

        registry.record_performance(_sample("alpha", accuracy=50))
        assert alpha.accuracy_prior == round(0.7 * 90 + 0.3 * 50)

    def test_sample_sink_called_and_failures_isolated(self, three_backends, test_settings):
        sink = MagicMock(side_effect=RuntimeError("disk full"))
        registry = ModelRegistry(three_backends, settings=test_settings, sample_sink=sink)

        registry.record_performance(_sample("alpha"))

        sink.assert_called_once()
        assert len(registry.samples()) == 1

    def test_update_user_satisfaction(self, registry):
        registry.record_performance(_sample("alpha", query_id="first"))
        registry.record_performance(_sample("alpha", query_id="second"))

        assert registry.update_user_satisfaction("alpha", "simple", 80) is True
        by_id = {s.query_id: s for s in registry.samples()}
        assert by_id["second"].user_satisfaction == 80
        assert by_id["first"].user_satisfaction is None

        assert registry.update_user_satisfaction("beta", "simple", 80) is False

    def test_samples_returns_copies(self, registry):
        registry.record_performance(_sample("alpha"))
        registry.samples()[0].accuracy = 0
        assert registry.samples()[0].accuracy == 90.0

    def test_model_stats(self, registry):
        registry.record_performance(_sample("alpha", accuracy=80, latency=1000))
        registry.record_performance(_sample("alpha", accuracy=60, latency=3000, error_flag=True))

        stats = registry.get_model_stats("alpha")
        assert stats["total_queries"] == 2
        assert stats["average_accuracy"] == 70
        assert stats["average_latency"] == 2000
        assert stats["error_rate"] == 0.5
        assert registry.get_model_stats("gamma")["total_queries"] == 0

    def test_recent_performance_filters_by_category(self, registry):
        registry.record_performance(_sample("alpha", category="simple"))
        registry.record_performance(_sample("alpha", category="analytics"))

        assert len(registry.recent_performance("alpha")) == 2
        assert len(registry.recent_performance("alpha", "analytics")) == 1


class TestDefaultCatalog:
    """默认模型目录"""

    def test_without_api_keys_only_rule_based_is_available(self, test_settings):
        registry = ModelRegistry(settings=test_settings)

        assert len(registry.all_models()) == 9
        assert [m.id for m in registry.get_available_models()] == ["rule-based"]

    def test_api_keys_enable_providers(self, make_settings):
        catalog = {m.id: m for m in default_model_catalog(make_settings(OPENAI_API_KEY="sk-test"))}

        assert catalog["gpt-4"].is_configured
        assert catalog["gpt-3.5-turbo"].is_configured
        assert not catalog["claude-3-sonnet"].is_configured
        assert catalog["sqlcoder-7b"].specialization == Specialization.SQL
