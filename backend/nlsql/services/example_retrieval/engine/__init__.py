"""
引擎模块

包含:
- ExampleRetrievalEngine: 示例检索引擎
"""

from .retrieval_engine import ExampleRetrievalEngine

__all__ = [
    "ExampleRetrievalEngine",
]
