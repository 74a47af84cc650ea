"""
SQL 生成模块

模块结构:
- prompt_builder: 提示词构建与模型响应解析
- invokers: 后端调用器（LangChain / 规则兜底 / 组合路由）
- orchestrator: 模型选择、回退链与集成模式
"""

from .prompt_builder import (
    SYSTEM_PROMPT,
    build_schema_prompt,
    build_generation_messages,
    extract_sql_from_response,
    parse_backend_response,
)
from .invokers import (
    BackendInvoker,
    LangChainBackendInvoker,
    RuleBasedInvoker,
    CompositeInvoker,
    build_default_invoker,
)
from .orchestrator import (
    GenerationOrchestrator,
    calculate_consensus,
    levenshtein_distance,
    sql_similarity,
    select_recommended,
)

__all__ = [
    "SYSTEM_PROMPT",
    "build_schema_prompt",
    "build_generation_messages",
    "extract_sql_from_response",
    "parse_backend_response",
    "BackendInvoker",
    "LangChainBackendInvoker",
    "RuleBasedInvoker",
    "CompositeInvoker",
    "build_default_invoker",
    "GenerationOrchestrator",
    "calculate_consensus",
    "levenshtein_distance",
    "sql_similarity",
    "select_recommended",
]
