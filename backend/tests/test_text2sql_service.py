"""
Text2SQL 服务端到端测试

默认配置下没有任何 API Key，只有规则兜底可用；集成模式用假调用器驱动。
"""
import pytest

from nlsql.core.context import AppContext
from nlsql.core.exceptions import ConfigurationError
from nlsql.schemas.example import Complexity, PatternCategory
from nlsql.schemas.generation import BackendOutput, QueryCategory
from nlsql.schemas.text2sql import FeedbackRequest, Text2SQLRequest
from nlsql.services.text2sql_service import Text2SQLService, calculate_final_confidence
from conftest import ScriptedInvoker


COMPLEX_QUERY = "customers who have more than 5 orders over time and their products"


@pytest.fixture
def service(test_settings):
    return Text2SQLService(AppContext.create(settings=test_settings))


@pytest.fixture
def ensemble_service(test_settings, three_backends):
    invoker = ScriptedInvoker()
    ctx = AppContext.create(settings=test_settings, invoker=invoker, descriptors=three_backends)
    return Text2SQLService(ctx), invoker


class TestGenerate:
    """生成流程"""

    @pytest.mark.asyncio
    async def test_rule_based_count(self, service, shop_schema):
        request = Text2SQLRequest(user_query="how many customers do we have", schema=shop_schema)

        response = await service.generate(request)

        assert response.sql == "SELECT COUNT(*) AS customers_count FROM customers;"
        assert response.model_used == "rule-based"
        assert response.attempts == ["rule-based"]
        assert response.query_id
        assert response.intent.category == "count"
        assert response.intent.entities == ["customers"]
        assert response.validation_result.is_valid
        assert response.examples_used
        assert response.ensemble_info is None
        assert response.confidence == calculate_final_confidence(
            70, response.validation_result.confidence, response.intent.complexity
        )

    @pytest.mark.asyncio
    async def test_unsupported_dialect_raises(self, service, shop_schema):
        request = Text2SQLRequest(user_query="show me all customers", schema=shop_schema, dialect="oracle")

        with pytest.raises(ConfigurationError):
            await service.generate(request)

    @pytest.mark.asyncio
    async def test_max_examples_respected(self, service, shop_schema):
        request = Text2SQLRequest(user_query="show me all customers", schema=shop_schema, max_examples=1)

        response = await service.generate(request)
        assert len(response.examples_used) == 1

    @pytest.mark.asyncio
    async def test_complex_query_uses_ensemble(self, ensemble_service, shop_schema):
        service, invoker = ensemble_service
        request = Text2SQLRequest(user_query=COMPLEX_QUERY, schema=shop_schema, use_ensemble=True)

        response = await service.generate(request)

        assert response.intent.complexity == Complexity.COMPLEX
        assert response.ensemble_info.models_used == ["alpha", "beta", "gamma"]
        assert response.ensemble_info.consensus_score == 100
        assert sorted(invoker.called_models) == ["alpha", "beta", "gamma"]
        assert response.alternatives == ["SELECT COUNT(*) FROM customers;"] * 2

    @pytest.mark.asyncio
    async def test_simple_query_ignores_ensemble_flag(self, ensemble_service, shop_schema):
        service, invoker = ensemble_service
        request = Text2SQLRequest(user_query="how many customers do we have", schema=shop_schema,
                                  use_ensemble=True)

        response = await service.generate(request)

        assert response.ensemble_info is None
        assert invoker.called_models == ["alpha"]

    @pytest.mark.asyncio
    async def test_ensemble_disabled_by_settings(self, make_settings, three_backends, shop_schema):
        invoker = ScriptedInvoker()
        ctx = AppContext.create(settings=make_settings(ENSEMBLE_ENABLED=False),
                                invoker=invoker, descriptors=three_backends)
        request = Text2SQLRequest(user_query=COMPLEX_QUERY, schema=shop_schema, use_ensemble=True)

        response = await Text2SQLService(ctx).generate(request)

        assert response.ensemble_info is None
        assert len(invoker.calls) == 1

    @pytest.mark.asyncio
    async def test_invalid_ensemble_result_retried_with_error(self, test_settings, three_backends, shop_schema):
        broken = BackendOutput(sql="SELECT (COUNT(*) FROM customers;", confidence=90)

        async def alpha(descriptor, context):
            if context.previous_error:
                return BackendOutput(sql="SELECT COUNT(*) FROM customers;", confidence=90)
            return broken

        invoker = ScriptedInvoker({"alpha": alpha}, default=broken)
        ctx = AppContext.create(settings=test_settings, invoker=invoker, descriptors=three_backends)
        request = Text2SQLRequest(user_query=COMPLEX_QUERY, schema=shop_schema, use_ensemble=True)

        response = await Text2SQLService(ctx).generate(request)

        assert response.sql == "SELECT COUNT(*) FROM customers;"
        assert response.model_used == "alpha"
        assert response.ensemble_info is None
        assert response.validation_result.is_valid
        assert len(invoker.calls) == 4
        retry_model, retry_context = invoker.calls[-1]
        assert retry_model == "alpha"
        assert retry_context.retry_attempt == 1
        assert "Unbalanced parentheses" in retry_context.previous_error


class TestFeedback:
    """反馈"""

    @pytest.mark.asyncio
    async def test_feedback_updates_examples_and_satisfaction(self, service, shop_schema):
        response = await service.generate(
            Text2SQLRequest(user_query="how many customers do we have", schema=shop_schema)
        )
        example_ids = [ranked.id for ranked in response.examples_used]
        before = service.ctx.retrieval.get_example(example_ids[0]).usage_count

        outcome = service.submit_feedback(FeedbackRequest(
            query_id=response.query_id,
            example_ids=example_ids + ["missing-example"],
            was_successful=True,
            satisfaction=90,
        ))

        assert outcome["updated_examples"] == example_ids
        assert outcome["satisfaction_recorded"] is True
        assert service.ctx.retrieval.get_example(example_ids[0]).usage_count == before + 1

        sample = service.ctx.registry.samples()[-1]
        assert sample.model_id == "rule-based"
        assert sample.query_category == QueryCategory.SIMPLE.value
        assert sample.user_satisfaction == 90

    def test_unknown_query_id(self, service):
        outcome = service.record_feedback("no-such-query", [], was_successful=False, satisfaction=10)
        assert outcome == {"updated_examples": [], "satisfaction_recorded": False}

    @pytest.mark.asyncio
    async def test_satisfaction_clamped_to_range(self, service, shop_schema):
        response = await service.generate(
            Text2SQLRequest(user_query="how many customers do we have", schema=shop_schema)
        )

        outcome = service.record_feedback(response.query_id, [], was_successful=True, satisfaction=150)

        assert outcome["satisfaction_recorded"] is True
        assert service.ctx.registry.samples()[-1].user_satisfaction == 100

    @pytest.mark.asyncio
    async def test_query_log_is_bounded(self, make_settings, shop_schema):
        service = Text2SQLService(AppContext.create(settings=make_settings(PERFORMANCE_HISTORY_LIMIT=2)))
        request = Text2SQLRequest(user_query="how many customers do we have", schema=shop_schema)

        first = await service.generate(request)
        await service.generate(request)
        await service.generate(request)

        assert service.record_feedback(first.query_id, [], True, 50)["satisfaction_recorded"] is False


class TestCuratedExamples:
    """示例维护"""

    def test_add_curated_example_infers_pattern(self, service):
        size = len(service.ctx.retrieval)

        example = service.add_curated_example(
            "how many customers are there",
            "SELECT COUNT(*) FROM customers;",
            explanation="Counts customers",
        )

        assert len(service.ctx.retrieval) == size + 1
        assert service.ctx.retrieval.get_example(example.id) is example
        assert example.pattern.category == PatternCategory.COUNT
        assert example.pattern.tables == ["customers"]
        assert example.pattern.operations == ["COUNT"]
        assert "customers" in example.pattern.keywords

    def test_explicit_category_wins(self, service):
        example = service.add_curated_example(
            "customers with orders",
            "SELECT c.name FROM customers c JOIN orders o ON o.customer_id = c.id LIMIT 10;",
            category=PatternCategory.JOIN,
            complexity=Complexity.MEDIUM,
        )

        assert example.pattern.category == PatternCategory.JOIN
        assert example.pattern.complexity == Complexity.MEDIUM
        assert sorted(example.pattern.tables) == ["customers", "orders"]
        assert example.pattern.operations == ["JOIN", "LIMIT"]


class TestFinalConfidence:
    """综合置信度"""

    @pytest.mark.parametrize("model, validation, complexity, consensus, expected", [
        (90, 100, Complexity.SIMPLE, None, 66),      # 76 * 0.8 + 5 = 65.8
        (90, 100, Complexity.MEDIUM, None, 61),      # 60.8
        (90, 100, Complexity.COMPLEX, 100, 78),      # 76 * 0.7 + 30 - 5 = 78.2
        (0, 0, Complexity.COMPLEX, None, 0),
        (100, 100, Complexity.SIMPLE, 100, 91),      # 80 * 0.7 + 30 + 5
    ])
    def test_formula(self, model, validation, complexity, consensus, expected):
        assert calculate_final_confidence(model, validation, complexity, consensus) == expected
