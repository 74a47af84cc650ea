"""
示例检索引擎

流程：
1. 候选生成：关键词索引命中 ∪ 相关表命中 ∪ 偏好模式命中
2. 候选为空时按质量兜底（先取 quality >= 阈值的示例，仍为空则不限阈值）
3. ExampleRanker 打分排序
4. 应用 min_similarity 过滤后截取前 max_examples 个
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from nlsql.core.config import Settings, settings as default_settings
from nlsql.schemas.example import Example, LoadReport, RankedExample
from nlsql.schemas.schema_context import SchemaDescription
from ..ranking import ExampleRanker
from ..storage import ExampleStore, load_default_examples, load_examples_from_file
from ..utils import extract_keywords, identify_relevant_tables

logger = logging.getLogger(__name__)


class ExampleRetrievalEngine:
    """示例检索引擎，组合示例存储和排序器"""

    def __init__(self, store: Optional[ExampleStore] = None,
                 ranker: Optional[ExampleRanker] = None,
                 settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.store = store if store is not None else ExampleStore()
        self.ranker = ranker or ExampleRanker(self.settings)
        self.load_report: Optional[LoadReport] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None,
                      examples: Optional[Iterable[Example]] = None) -> "ExampleRetrievalEngine":
        """
        按配置构建引擎

        examples 为 None 时从 EXAMPLE_DATASET_PATH 加载，未配置路径则加载包内精选示例。
        """
        cfg = settings or default_settings
        report = None
        if examples is None:
            if cfg.EXAMPLE_DATASET_PATH:
                examples, report = load_examples_from_file(cfg.EXAMPLE_DATASET_PATH)
            else:
                examples, report = load_default_examples()

        engine = cls(store=ExampleStore(examples), settings=cfg)
        engine.load_report = report
        logger.info(
            f"Example retrieval engine ready: {len(engine.store)} examples, "
            f"{engine.store.keyword_index_size} indexed keywords"
        )
        return engine

    def __len__(self) -> int:
        return len(self.store)

    # ========================================
    # 检索
    # ========================================

    def select_examples(self, query: str, schema: Optional[SchemaDescription] = None,
                        max_examples: Optional[int] = None,
                        min_similarity: Optional[float] = None,
                        preferred_patterns: Optional[Sequence[str]] = None) -> List[RankedExample]:
        """
        为查询选择 Few-shot 示例

        Args:
            query: 用户自然语言查询
            schema: 当前数据库 Schema
            max_examples: 返回数量，默认 MAX_EXAMPLES_PER_QUERY
            min_similarity: 相似度下限（截断前过滤）
            preferred_patterns: 偏好的模式键，如 "count_simple"

        Returns:
            按 final_score 降序排列的示例
        """
        if max_examples is None:
            max_examples = self.settings.MAX_EXAMPLES_PER_QUERY
        if max_examples <= 0:
            return []

        relevant_tables = identify_relevant_tables(query, schema) if schema else []
        candidate_ids = self._find_candidates(query, relevant_tables, preferred_patterns)

        if candidate_ids:
            candidates = [self.store.get(eid) for eid in sorted(candidate_ids)]
        else:
            candidates = self._fallback_candidates()
            logger.debug(f"No indexed candidates for '{query}', using {len(candidates)} quality fallbacks")

        ranked = self.ranker.rank(query, candidates, schema, relevant_tables)

        if min_similarity is not None:
            ranked = [r for r in ranked if r.similarity_score >= min_similarity]

        selected = ranked[:max_examples]
        logger.debug(
            f"Selected {len(selected)}/{len(ranked)} examples for '{query}': "
            f"{[r.id for r in selected]}"
        )
        return selected

    def _find_candidates(self, query: str, relevant_tables: Sequence[str],
                         preferred_patterns: Optional[Sequence[str]]) -> set:
        candidate_ids = set()

        for keyword in extract_keywords(query):
            candidate_ids |= self.store.lookup_keyword(keyword)

        for table in relevant_tables:
            candidate_ids |= self.store.lookup_table(table)

        for pattern_key in preferred_patterns or ():
            candidate_ids |= self.store.lookup_pattern(pattern_key)

        return candidate_ids

    def _fallback_candidates(self) -> List[Example]:
        limit = self.settings.FALLBACK_EXAMPLE_LIMIT
        candidates = self.store.top_by_quality(limit, min_quality=self.settings.FALLBACK_QUALITY_THRESHOLD)
        if not candidates:
            candidates = self.store.top_by_quality(limit)
        return candidates

    # ========================================
    # 维护
    # ========================================

    def add_example(self, example: Example) -> None:
        self.store.add_example(example)

    def update_quality(self, example_id: str, was_successful: bool) -> Optional[Example]:
        return self.store.update_quality(example_id, was_successful)

    def get_example(self, example_id: str) -> Optional[Example]:
        return self.store.get(example_id)

    def list_examples(self) -> List[Example]:
        return self.store.all()

    def get_stats(self) -> Dict[str, Any]:
        stats = self.store.get_stats()
        stats["indexed_keywords"] = self.store.keyword_index_size
        stats["pattern_keys"] = self.store.pattern_keys
        if self.load_report is not None:
            stats["quarantined"] = len(self.load_report.quarantined)
        return stats
