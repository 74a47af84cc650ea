"""
示例检索 - 工具函数

包含:
- extract_keywords: 从自然语言中提取关键词（索引和查询共用）
- identify_relevant_tables: 根据查询文本识别 Schema 中的相关表
- extract_tables_from_sql: 从SQL中提取表名
- clean_sql: 清理SQL语句
- generate_example_id: 生成示例ID
"""

import re
import uuid
import logging
from typing import Iterable, List

from nlsql.schemas.schema_context import SchemaDescription

logger = logging.getLogger(__name__)


STOP_WORDS = frozenset({
    'the', 'a', 'an', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for', 'of',
    'with', 'by', 'is', 'are', 'was', 'were', 'be', 'been', 'being', 'have',
    'has', 'had', 'do', 'does', 'did', 'will', 'would', 'could', 'should',
    'may', 'might', 'can',
})

# 两条文本同时包含时给予相似度加分的常见短语
COMMON_PHRASES = ('show me', 'how many', 'top 5', 'top 10', 'total revenue', 'by month')


def extract_keywords(text: str) -> List[str]:
    """
    提取关键词

    小写化、去标点，过滤长度 <= 2 的词、停用词和纯数字。
    返回结果保留原始顺序（可能包含重复词）。
    """
    if not text:
        return []
    cleaned = re.sub(r'[^\w\s]', ' ', text.lower())
    return [
        word for word in cleaned.split()
        if len(word) > 2 and word not in STOP_WORDS and not word.isdigit()
    ]


def _table_name_variants(table_name: str) -> List[str]:
    """表名按下划线拆分后的词，以及去掉复数 s 的单数形式"""
    words = [w for w in table_name.lower().split('_') if w]
    singular = [w[:-1] if w.endswith('s') and len(w) > 3 else w for w in words]
    return words + singular


def identify_relevant_tables(query: str, schema: SchemaDescription) -> List[str]:
    """识别查询中提及的表（表名词或其单数形式出现在查询文本中）"""
    if schema is None:
        return []
    lower_query = query.lower()
    relevant = []
    for table_name in schema.tables.keys():
        if any(variant in lower_query for variant in _table_name_variants(table_name)):
            relevant.append(table_name)
    return relevant


def extract_tables_from_sql(sql: str) -> List[str]:
    """从SQL中提取表名"""
    # 移除注释和多余空格
    sql_clean = re.sub(r'--.*?(\n|$)', ' ', sql)
    sql_clean = re.sub(r'/\*.*?\*/', '', sql_clean, flags=re.DOTALL)
    sql_clean = ' '.join(sql_clean.split())

    # 查找FROM和JOIN后的表名
    pattern = r'(?:FROM|JOIN)\s+([a-zA-Z_][a-zA-Z0-9_]*)'
    matches = re.findall(pattern, sql_clean, re.IGNORECASE)

    tables = []
    for match in matches:
        name = match.lower()
        if name not in tables:
            tables.append(name)
    return tables


def clean_sql(sql: str) -> str:
    """清理SQL语句"""
    # 移除代码块标记
    sql = re.sub(r'```sql\n?', '', sql)
    sql = re.sub(r'```\n?', '', sql)

    # 移除多余的空格和换行
    sql = ' '.join(sql.split())

    # 确保以分号结尾
    if sql and not sql.strip().endswith(';'):
        sql = sql.strip() + ';'

    return sql


def generate_example_id() -> str:
    """生成示例ID"""
    return f"ex_{uuid.uuid4().hex[:12]}"


def jaccard(left: Iterable[str], right: Iterable[str]) -> float:
    """Jaccard 相似度，任一为空时返回 0"""
    left_set, right_set = set(left), set(right)
    if not left_set or not right_set:
        return 0.0
    return len(left_set & right_set) / len(left_set | right_set)
