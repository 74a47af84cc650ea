"""
排序模块

包含:
- ExampleRanker: 多维度示例排序器
"""

from .example_ranker import ExampleRanker

__all__ = [
    "ExampleRanker",
]
