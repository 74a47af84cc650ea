"""
提示词构建、响应解析与后端调用器测试
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from nlsql.core.model_registry import Specialization
from nlsql.schemas.generation import BackendOutput, GenerationContext
from nlsql.services.example_retrieval import ExampleRetrievalEngine
from nlsql.services.generation import (
    CompositeInvoker,
    LangChainBackendInvoker,
    RuleBasedInvoker,
    build_default_invoker,
    build_generation_messages,
    build_schema_prompt,
    extract_sql_from_response,
    parse_backend_response,
)
from conftest import make_descriptor


class TestPromptBuilder:
    """提示词构建"""

    def test_schema_prompt_marks_keys(self, shop_schema):
        prompt = build_schema_prompt(shop_schema)

        assert "-- Table: orders (~20000 rows)" in prompt
        assert "--   id integer [PK, NOT NULL]" in prompt
        assert "--   customer_id integer [FK]" in prompt
        assert "-- orders.customer_id -> customers.id" in prompt

    def test_empty_schema(self):
        assert "no schema" in build_schema_prompt(None)

    def test_messages_include_examples_error_and_question(self, shop_schema, test_settings):
        engine = ExampleRetrievalEngine.from_settings(test_settings)
        examples = engine.select_examples("how many customers do we have", shop_schema, max_examples=2)
        context = GenerationContext(
            user_query="how many customers do we have",
            schema=shop_schema,
            dialect="mysql",
            retry_attempt=1,
            previous_error="Validation failed: Unbalanced parentheses",
            examples=examples,
        )

        system, human = build_generation_messages(context)

        assert isinstance(system, SystemMessage)
        assert isinstance(human, HumanMessage)
        assert "mysql" in system.content
        assert "Examples:" in human.content
        assert examples[0].sql in human.content
        assert "Unbalanced parentheses" in human.content
        assert human.content.endswith('User request: "how many customers do we have"')


class TestResponseParsing:
    """响应解析"""

    def test_fenced_response(self):
        response = (
            "```sql\nSELECT COUNT(*)\nFROM customers\n```\n"
            "Explanation: Counts all customers\n"
            "Confidence: 88"
        )
        output = parse_backend_response(response, default_confidence=50)

        assert output.sql == "SELECT COUNT(*) FROM customers;"
        assert output.explanation == "Counts all customers"
        assert output.confidence == 88

    def test_plain_response_uses_defaults(self):
        response = "Here you go:\nSELECT name FROM customers\nWHERE city = 'Paris';\nThanks"
        output = parse_backend_response(response, default_confidence=75, default_explanation="n/a")

        assert output.sql == "SELECT name FROM customers WHERE city = 'Paris';"
        assert output.confidence == 75
        assert output.explanation == "n/a"

    def test_confidence_clamped(self):
        output = parse_backend_response("SELECT 1;\nConfidence: 250", default_confidence=50)
        assert output.confidence == 100

    def test_extract_without_sql_returns_text(self):
        assert extract_sql_from_response("  no query here ") == "no query here"


class TestLangChainInvoker:
    """LangChain 调用器"""

    @pytest.mark.asyncio
    async def test_invoke_uses_injected_model(self, simple_context):
        model = MagicMock()
        model.ainvoke = AsyncMock(return_value=AIMessage(
            content="```sql\nSELECT COUNT(*) FROM customers;\n```\nExplanation: counts"
        ))
        descriptor = make_descriptor("gpt-4", accuracy_prior=95, provider="openai")
        invoker = LangChainBackendInvoker(models={"gpt-4": model})

        output = await invoker.invoke(descriptor, simple_context)

        assert output.sql == "SELECT COUNT(*) FROM customers;"
        assert output.confidence == 95
        messages = model.ainvoke.await_args.args[0]
        assert isinstance(messages[0], SystemMessage)

    @pytest.mark.asyncio
    async def test_content_blocks_are_joined(self, simple_context):
        model = MagicMock()
        model.ainvoke = AsyncMock(return_value=AIMessage(content=[
            {"type": "text", "text": "SELECT id "},
            {"type": "text", "text": "FROM customers;"},
        ]))
        invoker = LangChainBackendInvoker(models={"claude": model})

        output = await invoker.invoke(make_descriptor("claude", provider="anthropic"), simple_context)
        assert output.sql == "SELECT id FROM customers;"

    def test_models_created_lazily_and_cached(self, make_settings):
        factory = MagicMock(return_value=MagicMock())
        invoker = LangChainBackendInvoker(settings=make_settings(), model_factory=factory)
        descriptor = make_descriptor("gpt-4", provider="openai")

        first = invoker.get_model(descriptor)
        second = invoker.get_model(descriptor)

        assert first is second
        factory.assert_called_once_with(descriptor)

    def test_default_factory_reads_provider_key(self, make_settings, monkeypatch):
        from nlsql.services.generation import invokers

        created = {}

        def fake_create_chat_model(**kwargs):
            created.update(kwargs)
            return MagicMock()

        monkeypatch.setattr(invokers, "create_chat_model", fake_create_chat_model)
        invoker = LangChainBackendInvoker(settings=make_settings(ANTHROPIC_API_KEY="sk-ant", LLM_MAX_TOKENS=512))
        descriptor = make_descriptor("claude-3-sonnet", provider="anthropic")
        descriptor.model_name = "claude-3-sonnet-20240229"

        invoker.get_model(descriptor)

        assert created["provider"] == "anthropic"
        assert created["model_name"] == "claude-3-sonnet-20240229"
        assert created["api_key"] == "sk-ant"
        assert created["max_tokens"] == 512
        assert created["base_url"] is None


class TestRuleBasedInvoker:
    """规则兜底"""

    def setup_method(self):
        self.invoker = RuleBasedInvoker()
        self.descriptor = make_descriptor("rule-based", provider="rule_based")

    @pytest.mark.asyncio
    async def test_count_template(self, simple_context):
        output = await self.invoker.invoke(self.descriptor, simple_context)

        assert output.sql == "SELECT COUNT(*) AS customers_count FROM customers;"
        assert output.confidence == 70

    @pytest.mark.asyncio
    async def test_top_n_template(self, shop_schema):
        context = GenerationContext(user_query="show the top 3 products", schema=shop_schema)
        output = await self.invoker.invoke(self.descriptor, context)

        assert output.sql == "SELECT id, name, price FROM products ORDER BY price DESC LIMIT 3;"

    @pytest.mark.asyncio
    async def test_select_template(self, shop_schema):
        context = GenerationContext(user_query="show me all customers", schema=shop_schema)
        output = await self.invoker.invoke(self.descriptor, context)

        assert output.sql == "SELECT id, name, city FROM customers ORDER BY id LIMIT 20;"

    @pytest.mark.asyncio
    async def test_empty_schema_raises(self):
        context = GenerationContext(user_query="how many customers do we have")
        with pytest.raises(ValueError):
            await self.invoker.invoke(self.descriptor, context)


class TestCompositeInvoker:
    """组合路由"""

    @pytest.mark.asyncio
    async def test_routes_by_provider(self, simple_context):
        fake = MagicMock()
        fake.invoke = AsyncMock(return_value=BackendOutput(sql="SELECT 1 FROM customers;"))
        composite = CompositeInvoker(routes={"fake": fake})

        output = await composite.invoke(make_descriptor("m", provider="fake"), simple_context)
        assert output.sql == "SELECT 1 FROM customers;"

        with pytest.raises(LookupError):
            await composite.invoke(make_descriptor("x", provider="unknown"), simple_context)

    @pytest.mark.asyncio
    async def test_default_invoker_routes_rule_based(self, simple_context, test_settings):
        composite = build_default_invoker(test_settings)
        descriptor = make_descriptor("rule-based", provider="rule_based",
                                     specialization=Specialization.GENERAL)

        output = await composite.invoke(descriptor, simple_context)
        assert output.sql.startswith("SELECT COUNT(*)")
        assert isinstance(composite.default, LangChainBackendInvoker)
