"""
示例排序器

final_score = 0.35 * similarity + 0.25 * relevance + 0.20 * quality/100
            + 0.15 * success/100 + 0.05 * min(usage/10, 1)

权重来自配置（SIMILARITY_WEIGHT 等），排序结果按 final_score 降序，
分数相同按示例 ID 升序，保证结果确定。
"""

import logging
from typing import Iterable, List, Optional, Sequence

from nlsql.core.config import Settings, settings as default_settings
from nlsql.schemas.example import Example, RankedExample
from nlsql.schemas.schema_context import SchemaDescription
from ..utils import COMMON_PHRASES, extract_keywords, jaccard

logger = logging.getLogger(__name__)


# 文本包含关系加分 / 共享常见短语加分
CONTAINMENT_BONUS = 0.3
PHRASE_BONUS = 0.2


class ExampleRanker:
    """多维度示例排序器"""

    def __init__(self, settings: Optional[Settings] = None):
        cfg = settings or default_settings
        self.weights = {
            'similarity': cfg.SIMILARITY_WEIGHT,
            'relevance': cfg.RELEVANCE_WEIGHT,
            'quality': cfg.QUALITY_WEIGHT,
            'success': cfg.SUCCESS_WEIGHT,
            'usage': cfg.USAGE_WEIGHT,
        }

    def rank(self, query: str, candidates: Iterable[Example],
             schema: Optional[SchemaDescription],
             relevant_tables: Sequence[str]) -> List[RankedExample]:
        """对候选示例打分并排序"""
        query_keywords = extract_keywords(query)
        relevant = [t.lower() for t in relevant_tables]
        schema_tables = {t.lower() for t in schema.tables.keys()} if schema else set()

        results = []
        for example in candidates:
            similarity = self.calculate_similarity(query, query_keywords, example)
            relevance = self.calculate_relevance(example, relevant, schema_tables)
            final_score = self.calculate_final_score(example, similarity, relevance)

            ranked = RankedExample(
                example=example,
                similarity_score=similarity,
                relevance_score=relevance,
                final_score=final_score,
            )
            ranked.reason = self._generate_reason(ranked)
            results.append(ranked)

        return sorted(results, key=lambda r: (-r.final_score, r.example.id))

    # ========================================
    # 分项得分
    # ========================================

    def calculate_similarity(self, query: str, query_keywords: List[str],
                             example: Example) -> float:
        """
        文本相似度

        关键词 Jaccard，加上：
        - 一方小写文本包含另一方：+0.3
        - 否则两者共享常见短语：+0.2
        任一关键词列表为空时为 0，上限 1.0。
        """
        example_keywords = extract_keywords(example.natural_language)
        if not query_keywords or not example_keywords:
            return 0.0

        score = jaccard(query_keywords, example_keywords)

        query_lower = query.lower()
        example_lower = example.natural_language.lower()
        if query_lower in example_lower or example_lower in query_lower:
            score += CONTAINMENT_BONUS
        elif any(p in query_lower and p in example_lower for p in COMMON_PHRASES):
            score += PHRASE_BONUS

        return min(score, 1.0)

    def calculate_relevance(self, example: Example, relevant_tables: Sequence[str],
                            schema_tables: set) -> float:
        """
        Schema 相关度

        0.6 * 表重叠度 + 0.4 * 示例表在当前 Schema 中的存在比例
        示例不引用任何表时存在比例记为 1.0。
        """
        example_tables = {t.lower() for t in example.pattern.tables}
        relevant = set(relevant_tables)

        denominator = max(len(example_tables), len(relevant))
        overlap = len(example_tables & relevant) / denominator if denominator else 0.0

        if example_tables:
            present = len(example_tables & schema_tables) / len(example_tables)
        else:
            present = 1.0

        return min(0.6 * overlap + 0.4 * present, 1.0)

    def calculate_final_score(self, example: Example, similarity: float,
                              relevance: float) -> float:
        w = self.weights
        return (
            w['similarity'] * similarity +
            w['relevance'] * relevance +
            w['quality'] * (example.quality_score / 100) +
            w['success'] * (example.success_rate / 100) +
            w['usage'] * min(example.usage_count / 10, 1.0)
        )

    def _generate_reason(self, ranked: RankedExample) -> str:
        """生成推荐理由"""
        reasons = []

        if ranked.similarity_score >= 0.7:
            reasons.append(f"highly similar wording ({ranked.similarity_score:.2f})")
        elif ranked.similarity_score >= 0.3:
            reasons.append(f"similar wording ({ranked.similarity_score:.2f})")

        if ranked.relevance_score >= 0.8:
            reasons.append("uses the same tables")
        elif ranked.relevance_score > 0.4:
            reasons.append("uses some of the same tables")

        if ranked.example.quality_score >= 90:
            reasons.append("high quality example")

        return "; ".join(reasons) if reasons else "related example"
