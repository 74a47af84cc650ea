"""
意图识别模块

包含:
- IntentClassifier: 意图识别器接口
- RegexIntentClassifier: 基于关键词和正则的默认实现
- QueryIntent / IntentType / RecognizedPattern: 识别结果模型
"""

from .base import (
    IntentClassifier,
    IntentType,
    QueryIntent,
    RecognizedPattern,
    HandlingSuggestions,
)
from .regex_classifier import (
    PatternRule,
    RegexIntentClassifier,
    DEFAULT_RULES,
    get_handling_suggestions,
)

__all__ = [
    "IntentClassifier",
    "IntentType",
    "QueryIntent",
    "RecognizedPattern",
    "HandlingSuggestions",
    "PatternRule",
    "RegexIntentClassifier",
    "DEFAULT_RULES",
    "get_handling_suggestions",
]
