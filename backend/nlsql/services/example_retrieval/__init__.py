"""
示例检索服务模块

为 NL2SQL 生成选择 Few-shot 示例。

包含:
- utils: 工具函数（分词、相关表识别等）
- storage: 示例存储与加载 (ExampleStore, load_examples_from_file)
- ranking: 排序服务 (ExampleRanker)
- engine: 检索引擎 (ExampleRetrievalEngine)
"""

# 工具函数
from .utils import (
    extract_keywords,
    identify_relevant_tables,
    extract_tables_from_sql,
    clean_sql,
    generate_example_id,
)

# 存储服务
from .storage import (
    ExampleStore,
    load_examples_from_records,
    load_examples_from_file,
    load_default_examples,
)

# 排序服务
from .ranking import ExampleRanker

# 检索引擎
from .engine import ExampleRetrievalEngine

__all__ = [
    # 工具函数
    "extract_keywords",
    "identify_relevant_tables",
    "extract_tables_from_sql",
    "clean_sql",
    "generate_example_id",
    # 存储服务
    "ExampleStore",
    "load_examples_from_records",
    "load_examples_from_file",
    "load_default_examples",
    # 排序服务
    "ExampleRanker",
    # 检索引擎
    "ExampleRetrievalEngine",
]
