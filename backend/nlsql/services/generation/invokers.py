"""
后端调用器

编排器把"用模型 M 生成 SQL"当作不透明的异步操作，通过 BackendInvoker 接口调用：
- LangChainBackendInvoker: 基于 langchain_core 的 Chat 模型调用
- RuleBasedInvoker: 规则兜底，不依赖任何外部服务
- CompositeInvoker: 按模型描述的 provider 路由到具体调用器

调用器内部出错直接抛出异常，由编排器统一转换为 BackendInvocationFailure。
"""
import logging
import re
from typing import Callable, Dict, List, Optional, Protocol, runtime_checkable

from langchain_core.language_models import BaseChatModel

from nlsql.core.config import Settings, settings as default_settings
from nlsql.core.model_registry import ModelDescriptor
from nlsql.core.providers import create_chat_model, get_provider_config
from nlsql.schemas.generation import BackendOutput, GenerationContext
from nlsql.schemas.schema_context import TableSchema
from nlsql.services.intent import IntentClassifier, IntentType, RegexIntentClassifier
from .prompt_builder import build_generation_messages, parse_backend_response

logger = logging.getLogger(__name__)


@runtime_checkable
class BackendInvoker(Protocol):
    """后端调用接口"""

    async def invoke(self, descriptor: ModelDescriptor, context: GenerationContext) -> BackendOutput:
        ...


# ============================================================================
# LangChain 调用器
# ============================================================================

ChatModelFactory = Callable[[ModelDescriptor], BaseChatModel]


class LangChainBackendInvoker:
    """
    基于 LangChain Chat 模型的调用器

    模型实例按模型 ID 缓存；未注入时通过 create_chat_model 按需创建。
    """

    def __init__(self, settings: Optional[Settings] = None,
                 models: Optional[Dict[str, BaseChatModel]] = None,
                 model_factory: Optional[ChatModelFactory] = None):
        self.settings = settings or default_settings
        self._models: Dict[str, BaseChatModel] = dict(models or {})
        self._model_factory = model_factory or self._create_model

    def _create_model(self, descriptor: ModelDescriptor) -> BaseChatModel:
        config = get_provider_config(descriptor.provider)
        api_key = getattr(self.settings, config.api_key_setting, "") if config else ""
        base_url = self.settings.OPENAI_API_BASE if descriptor.provider == "openai" else None

        return create_chat_model(
            provider=descriptor.provider,
            model_name=descriptor.model_name or descriptor.id,
            api_key=api_key or None,
            base_url=base_url,
            temperature=self.settings.LLM_TEMPERATURE,
            max_tokens=self.settings.LLM_MAX_TOKENS,
            timeout=self.settings.BACKEND_CALL_TIMEOUT or None,
        )

    def get_model(self, descriptor: ModelDescriptor) -> BaseChatModel:
        if descriptor.id not in self._models:
            self._models[descriptor.id] = self._model_factory(descriptor)
        return self._models[descriptor.id]

    async def invoke(self, descriptor: ModelDescriptor, context: GenerationContext) -> BackendOutput:
        model = self.get_model(descriptor)
        messages = build_generation_messages(context)

        logger.debug(f"Invoking {descriptor.id} (attempt {context.retry_attempt})")
        response = await model.ainvoke(messages)

        return parse_backend_response(
            _message_text(response.content),
            default_confidence=descriptor.accuracy_prior,
        )


def _message_text(content) -> str:
    """AIMessage.content 可能是字符串或内容块列表"""
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


# ============================================================================
# 规则兜底调用器
# ============================================================================

RULE_BASED_CONFIDENCE = 70.0
DEFAULT_ROW_LIMIT = 20
DEFAULT_TOP_N = 5

_NUMERIC_TYPES = ("int", "numeric", "decimal", "float", "double", "real", "money", "number")


class RuleBasedInvoker:
    """
    规则兜底：根据意图和相关表生成模板 SQL

    - COUNT：SELECT COUNT(*) AS {table}_count FROM table
    - TOP N：按数值列降序取前 N 行
    - 其他：列出表的前几列，按第一列排序并限制行数
    """

    def __init__(self, classifier: Optional[IntentClassifier] = None):
        self.classifier = classifier or RegexIntentClassifier()

    async def invoke(self, descriptor: ModelDescriptor, context: GenerationContext) -> BackendOutput:
        schema = context.schema_description
        intent = self.classifier.classify(context.user_query, schema)

        table_name = self._pick_table(intent.entities, context)
        if table_name is None:
            raise ValueError("Rule-based generation needs at least one table in the schema")

        table = schema.get_table(table_name)
        query_lower = context.user_query.lower()

        if intent.category == IntentType.COUNT:
            sql = f"SELECT COUNT(*) AS {table_name}_count FROM {table_name};"
            explanation = f"Counts the total number of rows in {table_name}"
        elif intent.category == IntentType.TOP_N:
            limit = _top_n_from_conditions(intent.conditions)
            order_column = _pick_order_column(table, query_lower)
            sql = (
                f"SELECT {_select_list(table)} FROM {table_name} "
                f"ORDER BY {order_column} DESC LIMIT {limit};"
            )
            explanation = f"Returns the top {limit} rows of {table_name} ordered by {order_column}"
        else:
            columns = table.column_names if table else []
            order_clause = f" ORDER BY {columns[0]}" if columns else ""
            sql = f"SELECT {_select_list(table)} FROM {table_name}{order_clause} LIMIT {DEFAULT_ROW_LIMIT};"
            explanation = f"Lists rows from {table_name}"

        logger.debug(f"Rule-based SQL for '{context.user_query}': {sql}")
        return BackendOutput(sql=sql, explanation=explanation, confidence=RULE_BASED_CONFIDENCE)

    def _pick_table(self, entities: List[str], context: GenerationContext) -> Optional[str]:
        """优先取意图识别出的表，其次取排名最高示例引用的表，最后取 Schema 的第一张表"""
        schema = context.schema_description
        for entity in entities:
            if schema.has_table(entity):
                return entity

        for ranked in context.examples:
            for table in ranked.pattern.tables:
                if schema.has_table(table):
                    return table

        return schema.table_names[0] if schema.table_names else None


def _select_list(table: Optional[TableSchema], max_columns: int = 5) -> str:
    if table is None or not table.columns:
        return "*"
    return ", ".join(table.column_names[:max_columns])


def _pick_order_column(table: Optional[TableSchema], query_lower: str) -> str:
    if table is None or not table.columns:
        return "1"

    numeric = [c for c in table.columns if any(t in c.data_type.lower() for t in _NUMERIC_TYPES)]
    for column in numeric:
        if any(part in query_lower for part in column.name.lower().split("_") if len(part) > 2):
            return column.name

    non_key = [c for c in numeric if not (c.is_primary_key or c.is_foreign_key)]
    if non_key:
        return non_key[0].name
    return table.primary_keys[0] if table.primary_keys else table.columns[0].name


def _top_n_from_conditions(conditions: List[str]) -> int:
    for condition in conditions:
        match = re.match(r"ranking:\s*\w+\s+(\d+)", condition)
        if match:
            return int(match.group(1))
    return DEFAULT_TOP_N


# ============================================================================
# 组合调用器
# ============================================================================

class CompositeInvoker:
    """按 descriptor.provider 路由到已注册的调用器"""

    def __init__(self, routes: Optional[Dict[str, BackendInvoker]] = None,
                 default: Optional[BackendInvoker] = None):
        self.routes: Dict[str, BackendInvoker] = dict(routes or {})
        self.default = default

    def register(self, provider: str, invoker: BackendInvoker) -> None:
        self.routes[provider] = invoker

    async def invoke(self, descriptor: ModelDescriptor, context: GenerationContext) -> BackendOutput:
        invoker = self.routes.get(descriptor.provider, self.default)
        if invoker is None:
            raise LookupError(f"No invoker registered for provider '{descriptor.provider}'")
        return await invoker.invoke(descriptor, context)


def build_default_invoker(settings: Optional[Settings] = None,
                          classifier: Optional[IntentClassifier] = None) -> CompositeInvoker:
    """默认调用器：rule_based 走规则兜底，其余 provider 走 LangChain"""
    return CompositeInvoker(
        routes={"rule_based": RuleBasedInvoker(classifier)},
        default=LangChainBackendInvoker(settings),
    )
