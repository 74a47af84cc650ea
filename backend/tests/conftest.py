import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import pytest


backend_dir = Path(__file__).resolve().parents[1]
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))


from nlsql.core.config import Settings
from nlsql.core.model_registry import ModelDescriptor, ModelRegistry, Specialization
from nlsql.schemas.example import Example
from nlsql.schemas.generation import BackendOutput, GenerationContext, QueryCategory
from nlsql.schemas.schema_context import ColumnInfo, ForeignKeyInfo, SchemaDescription, TableSchema


# ============================================================================
# Schema / 配置
# ============================================================================

@pytest.fixture
def shop_schema() -> SchemaDescription:
    """customers / orders / products / order_items"""
    return SchemaDescription(tables={
        "customers": TableSchema(
            columns=[
                ColumnInfo(name="id", data_type="integer", nullable=False, is_primary_key=True),
                ColumnInfo(name="name", data_type="varchar"),
                ColumnInfo(name="city", data_type="varchar"),
            ],
            primary_keys=["id"],
            row_count=5000,
        ),
        "orders": TableSchema(
            columns=[
                ColumnInfo(name="id", data_type="integer", nullable=False, is_primary_key=True),
                ColumnInfo(name="customer_id", data_type="integer", is_foreign_key=True),
                ColumnInfo(name="total_amount", data_type="numeric"),
                ColumnInfo(name="order_date", data_type="date"),
            ],
            primary_keys=["id"],
            foreign_keys=[ForeignKeyInfo(column="customer_id", referenced_table="customers", referenced_column="id")],
            row_count=20000,
        ),
        "products": TableSchema(
            columns=[
                ColumnInfo(name="id", data_type="integer", nullable=False, is_primary_key=True),
                ColumnInfo(name="name", data_type="varchar"),
                ColumnInfo(name="price", data_type="numeric"),
            ],
            primary_keys=["id"],
            row_count=300,
        ),
        "order_items": TableSchema(
            columns=[
                ColumnInfo(name="order_id", data_type="integer", is_foreign_key=True),
                ColumnInfo(name="product_id", data_type="integer", is_foreign_key=True),
                ColumnInfo(name="quantity", data_type="integer"),
            ],
        ),
    })


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """构造测试配置：默认不配置任何 API Key，不限制超时"""
    def _make(**overrides) -> Settings:
        values = {
            "OPENAI_API_KEY": "",
            "ANTHROPIC_API_KEY": "",
            "GOOGLE_API_KEY": "",
            "HUGGING_FACE_API_KEY": "",
            "COHERE_API_KEY": "",
            "EXAMPLE_DATASET_PATH": None,
            "BACKEND_CALL_TIMEOUT": 0.0,
        }
        values.update(overrides)
        return Settings(**values)
    return _make


@pytest.fixture
def test_settings(make_settings) -> Settings:
    return make_settings()


# ============================================================================
# 模型描述 / 注册表
# ============================================================================

def make_descriptor(model_id: str, accuracy_prior: float = 80, cost: float = 0.0,
                    specialization: Specialization = Specialization.GENERAL,
                    priority: int = 10, dialects=("postgresql",),
                    configured: bool = True, provider: str = "fake") -> ModelDescriptor:
    return ModelDescriptor(
        id=model_id,
        name=model_id,
        provider=provider,
        specialization=specialization,
        supported_dialects=list(dialects),
        accuracy_prior=accuracy_prior,
        cost_per_query=cost,
        average_latency=1000,
        priority=priority,
        is_configured=configured,
    )


@pytest.fixture
def descriptor_factory():
    return make_descriptor


@pytest.fixture
def three_backends() -> List[ModelDescriptor]:
    """按得分依次为 alpha > beta > gamma"""
    return [
        make_descriptor("alpha", accuracy_prior=90, priority=1),
        make_descriptor("beta", accuracy_prior=85, priority=2),
        make_descriptor("gamma", accuracy_prior=80, priority=3),
    ]


@pytest.fixture
def registry(three_backends, test_settings) -> ModelRegistry:
    return ModelRegistry(descriptors=three_backends, settings=test_settings)


@pytest.fixture
def simple_context(shop_schema) -> GenerationContext:
    return GenerationContext(
        user_query="how many customers do we have",
        schema=shop_schema,
        query_category=QueryCategory.SIMPLE,
    )


# ============================================================================
# 假调用器
# ============================================================================

Outcome = Union[BackendOutput, Exception, Callable]


class ScriptedInvoker:
    """按模型 ID 返回预设结果或抛出预设异常，并记录调用"""

    def __init__(self, outcomes: Optional[Dict[str, Outcome]] = None,
                 default: Optional[Outcome] = None):
        self.outcomes = dict(outcomes or {})
        self.default = default or BackendOutput(
            sql="SELECT COUNT(*) FROM customers;", explanation="count", confidence=90
        )
        self.calls: List[Tuple[str, GenerationContext]] = []

    @property
    def called_models(self) -> List[str]:
        return [model_id for model_id, _ in self.calls]

    async def invoke(self, descriptor, context):
        self.calls.append((descriptor.id, context))
        outcome = self.outcomes.get(descriptor.id, self.default)
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            return await outcome(descriptor, context)
        return outcome


@pytest.fixture
def scripted_invoker():
    return ScriptedInvoker


# ============================================================================
# 示例
# ============================================================================

def make_example(example_id: str, natural_language: str, sql: str = "SELECT 1 FROM customers;",
                 category: str = "select_all", complexity: str = "simple",
                 tables=("customers",), quality: float = 85.0, **kwargs) -> Example:
    return Example(
        id=example_id,
        natural_language=natural_language,
        sql=sql,
        pattern={
            "category": category,
            "complexity": complexity,
            "tables": list(tables),
        },
        quality_score=quality,
        **kwargs,
    )


@pytest.fixture
def example_factory():
    return make_example
