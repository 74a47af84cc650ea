"""
示例存储

内存中的示例集合 + 两个倒排索引：
- keyword_index: 关键词 -> 示例ID集合
- pattern_index: "{category}_{complexity}" / "table_{小写表名}" -> 示例ID集合

启动时一次性构建；运行期只有 update_quality 修改单个示例的统计字段，
同一示例的并发更新通过该示例自己的锁串行化。
"""

import logging
import threading
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from nlsql.schemas.example import Example
from ..utils import extract_keywords

logger = logging.getLogger(__name__)


# 成功率 EMA 学习率
SUCCESS_RATE_ALPHA = 0.1
QUALITY_FLOOR = 50.0
QUALITY_CEILING = 95.0


class ExampleStore:
    """示例存储，带关键词索引和模式/表索引"""

    def __init__(self, examples: Optional[Iterable[Example]] = None):
        self._examples: Dict[str, Example] = {}
        self._keyword_index: Dict[str, Set[str]] = defaultdict(set)
        self._pattern_index: Dict[str, Set[str]] = defaultdict(set)
        self._locks: Dict[str, threading.Lock] = {}
        self._index_lock = threading.Lock()

        for example in examples or []:
            self.add_example(example)

    def __len__(self) -> int:
        return len(self._examples)

    def __contains__(self, example_id: str) -> bool:
        return example_id in self._examples

    # ========================================
    # 写入
    # ========================================

    def add_example(self, example: Example) -> None:
        """添加示例并更新索引，ID 已存在时替换旧示例"""
        with self._index_lock:
            if example.id in self._examples:
                self._remove_from_indexes(example.id)
            self._examples[example.id] = example
            self._locks.setdefault(example.id, threading.Lock())
            self._update_indexes(example)
        logger.debug(f"Added example: {example.id}")

    def _update_indexes(self, example: Example) -> None:
        for keyword in extract_keywords(example.natural_language):
            self._keyword_index[keyword].add(example.id)

        self._pattern_index[example.pattern.pattern_key].add(example.id)

        for table in example.pattern.tables:
            self._pattern_index[f"table_{table.lower()}"].add(example.id)

    def _remove_from_indexes(self, example_id: str) -> None:
        for index in (self._keyword_index, self._pattern_index):
            for key in [k for k, ids in index.items() if example_id in ids]:
                index[key].discard(example_id)
                if not index[key]:
                    del index[key]

    def update_quality(self, example_id: str, was_successful: bool) -> Optional[Example]:
        """
        根据反馈更新示例质量

        - usage_count + 1
        - success_rate 指数移动平均（alpha=0.1）
        - success_rate < 70 且 quality > 60 时 quality - 5（下限 50）
        - success_rate > 90 且 quality < 95 时 quality + 2（上限 95）

        未知 ID 记录日志后直接返回 None。
        """
        example = self._examples.get(example_id)
        if example is None:
            logger.warning(f"Cannot update quality, unknown example: {example_id}")
            return None

        with self._locks[example_id]:
            example.usage_count += 1

            new_value = 100.0 if was_successful else 0.0
            success_rate = (1 - SUCCESS_RATE_ALPHA) * example.success_rate + SUCCESS_RATE_ALPHA * new_value
            example.success_rate = min(100.0, max(0.0, success_rate))

            if example.success_rate < 70 and example.quality_score > 60:
                example.quality_score = max(example.quality_score - 5, QUALITY_FLOOR)
            elif example.success_rate > 90 and example.quality_score < 95:
                example.quality_score = min(example.quality_score + 2, QUALITY_CEILING)

            example.updated_at = datetime.now()

        logger.debug(
            f"Updated example {example_id}: usage={example.usage_count}, "
            f"success={example.success_rate:.1f}%, quality={example.quality_score}"
        )
        return example

    # ========================================
    # 查询
    # ========================================

    def get(self, example_id: str) -> Optional[Example]:
        return self._examples.get(example_id)

    def all(self) -> List[Example]:
        return list(self._examples.values())

    def lookup_keyword(self, keyword: str) -> Set[str]:
        return set(self._keyword_index.get(keyword, ()))

    def lookup_pattern(self, key: str) -> Set[str]:
        return set(self._pattern_index.get(key, ()))

    def lookup_table(self, table: str) -> Set[str]:
        return self.lookup_pattern(f"table_{table.lower()}")

    @property
    def keyword_index_size(self) -> int:
        return len(self._keyword_index)

    @property
    def pattern_keys(self) -> List[str]:
        return sorted(self._pattern_index.keys())

    def top_by_quality(self, limit: int, min_quality: Optional[float] = None) -> List[Example]:
        """按 quality_score 降序返回前 limit 个示例"""
        examples = self._examples.values()
        if min_quality is not None:
            examples = [ex for ex in examples if ex.quality_score >= min_quality]
        ranked = sorted(examples, key=lambda ex: (-ex.quality_score, ex.id))
        return ranked[:limit]

    def get_stats(self) -> Dict[str, object]:
        """示例库统计信息"""
        examples = list(self._examples.values())
        pattern_distribution: Dict[str, int] = {}
        complexity_distribution: Dict[str, int] = {}

        for example in examples:
            category = example.pattern.category.value
            complexity = example.pattern.complexity.value
            pattern_distribution[category] = pattern_distribution.get(category, 0) + 1
            complexity_distribution[complexity] = complexity_distribution.get(complexity, 0) + 1

        average_quality = (
            sum(ex.quality_score for ex in examples) / len(examples) if examples else 0.0
        )

        return {
            "total_examples": len(examples),
            "average_quality": average_quality,
            "pattern_distribution": pattern_distribution,
            "complexity_distribution": complexity_distribution,
        }
