"""
SQL 生成提示词构建器

提示词组成：
1. 系统提示：角色 + 方言 + 输出格式约定
2. Schema：SQL 注释风格，列出列类型并标注 PK / FK / NOT NULL，附关系
3. Few-shot 示例：检索引擎选出的示例
4. 上一次失败的错误（重试时）
5. 用户问题

输出格式约定：SQL 放在 ```sql 代码块中，随后是 Explanation: 和 Confidence: 两行，
由 parse_backend_response 解析。
"""
import logging
import re
from typing import List, Optional

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from nlsql.schemas.generation import BackendOutput, GenerationContext
from nlsql.schemas.schema_context import SchemaDescription
from nlsql.services.example_retrieval.utils import clean_sql

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are an expert SQL developer. Translate the user's question into a single read-only {dialect} query.

Rules:
- Use only the tables and columns listed in the schema.
- Generate exactly one SELECT (or WITH ... SELECT) statement.
- Never modify data (no INSERT, UPDATE, DELETE, DROP, ALTER).
- Add a LIMIT when the result could be large.

Answer in this format:
```sql
<the query>
```
Explanation: <one sentence describing what the query returns>
Confidence: <0-100>"""


def build_schema_prompt(schema: SchemaDescription) -> str:
    """构建 Schema 提示词（SQL 注释风格）"""
    if schema is None or not schema.tables:
        return "-- (no schema information available)\n"

    schema_str = ""
    for table_name, table in schema.tables.items():
        rows_str = f" (~{table.row_count} rows)" if table.row_count is not None else ""
        schema_str += f"-- Table: {table_name}{rows_str}\n"
        schema_str += "-- Columns:\n"

        for col in table.columns:
            flags = []
            if col.is_primary_key or col.name in table.primary_keys:
                flags.append("PK")
            if col.is_foreign_key:
                flags.append("FK")
            if not col.nullable:
                flags.append("NOT NULL")
            flag_str = f" [{', '.join(flags)}]" if flags else ""
            schema_str += f"--   {col.name} {col.data_type}{flag_str}\n"

        schema_str += "\n"

    relationships = [
        f"-- {table_name}.{fk.column} -> {fk.referenced_table}.{fk.referenced_column}"
        for table_name, table in schema.tables.items()
        for fk in table.foreign_keys
    ]
    relationships.extend(
        f"-- {rel.table}.{rel.column} -> {rel.referenced_table}.{rel.referenced_column}"
        for rel in schema.relationships
    )
    if relationships:
        schema_str += "-- Relationships:\n"
        schema_str += "\n".join(dict.fromkeys(relationships)) + "\n"

    return schema_str


def build_examples_prompt(context: GenerationContext) -> str:
    """构建 Few-shot 示例部分"""
    if not context.examples:
        return ""

    lines = ["Examples:"]
    for i, ranked in enumerate(context.examples, 1):
        lines.append(f"{i}. Question: {ranked.natural_language}")
        lines.append(f"   SQL: {ranked.sql}")
    return "\n".join(lines)


def build_generation_messages(context: GenerationContext) -> List[BaseMessage]:
    """构建发给 Chat 模型的消息列表"""
    sections = [
        "Database schema:",
        build_schema_prompt(context.schema_description),
    ]

    examples = build_examples_prompt(context)
    if examples:
        sections.append(examples)

    if context.previous_error:
        sections.append(
            f"A previous attempt failed with this error: {context.previous_error}\n"
            "Fix the problem in your new answer."
        )

    sections.append(f'User request: "{context.user_query}"')

    return [
        SystemMessage(content=SYSTEM_PROMPT.format(dialect=context.dialect)),
        HumanMessage(content="\n\n".join(sections)),
    ]


# ============================================================================
# 响应解析
# ============================================================================

_SQL_BLOCK = re.compile(r"```sql\s*\n?(.*?)```", re.DOTALL | re.IGNORECASE)
_ANY_BLOCK = re.compile(r"```\s*\n?(.*?)```", re.DOTALL)
_EXPLANATION = re.compile(r"^\s*explanation\s*:\s*(.+)$", re.IGNORECASE | re.MULTILINE)
_CONFIDENCE = re.compile(r"^\s*confidence\s*:\s*(\d+(?:\.\d+)?)", re.IGNORECASE | re.MULTILINE)


def extract_sql_from_response(response: str) -> str:
    """从模型响应中提取 SQL"""
    match = _SQL_BLOCK.search(response) or _ANY_BLOCK.search(response)
    if match:
        return match.group(1).strip()

    # 没有代码块时，从第一行 SELECT / WITH 开始截取到分号
    sql_lines = []
    in_sql = False
    for line in response.split("\n"):
        if not in_sql and line.strip().upper().startswith(("SELECT", "WITH")):
            in_sql = True
        if in_sql:
            if _EXPLANATION.match(line) or _CONFIDENCE.match(line):
                break
            sql_lines.append(line)
            if ";" in line:
                break

    if sql_lines:
        return "\n".join(sql_lines).strip()

    return response.strip()


def parse_backend_response(response: str, default_confidence: float,
                           default_explanation: Optional[str] = None) -> BackendOutput:
    """
    解析模型响应

    Args:
        response: 模型原始文本
        default_confidence: 响应中没有 Confidence 行时使用的置信度
        default_explanation: 响应中没有 Explanation 行时使用的解释
    """
    sql = clean_sql(extract_sql_from_response(response))

    explanation_match = _EXPLANATION.search(response)
    explanation = explanation_match.group(1).strip() if explanation_match else (default_explanation or "")

    confidence = default_confidence
    confidence_match = _CONFIDENCE.search(response)
    if confidence_match:
        confidence = float(confidence_match.group(1))

    return BackendOutput(
        sql=sql,
        explanation=explanation,
        confidence=max(0.0, min(100.0, confidence)),
    )
