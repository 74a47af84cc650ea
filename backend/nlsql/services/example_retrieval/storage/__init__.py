"""
存储模块

包含:
- ExampleStore: 内存示例存储（关键词索引 + 模式/表索引）
- loader: 示例库加载与校验
"""

from .example_store import ExampleStore
from .loader import (
    load_examples_from_records,
    load_examples_from_file,
    load_default_examples,
    DEFAULT_DATASET_PATH,
)

__all__ = [
    "ExampleStore",
    "load_examples_from_records",
    "load_examples_from_file",
    "load_default_examples",
    "DEFAULT_DATASET_PATH",
]
