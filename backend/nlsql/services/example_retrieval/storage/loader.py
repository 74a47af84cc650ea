"""
示例库加载

JSON 格式：{"examples": [...]}，也接受顶层直接是列表。
每条记录用 Example 模型严格校验：
- 校验失败的记录进入隔离列表（quarantine），并记录告警日志
- 重复 ID 的记录同样隔离
- 缺少 ID 的记录按 curated_{序号} 生成
文件不可读或不是合法 JSON 时抛出 DatasetError。
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from nlsql.core.exceptions import DatasetError
from nlsql.schemas.example import Example, LoadReport

logger = logging.getLogger(__name__)


DEFAULT_DATASET_PATH = Path(__file__).resolve().parents[1] / "data" / "curated_examples.json"


def load_examples_from_records(
    records: Sequence[Dict[str, Any]],
    source: Optional[str] = None
) -> Tuple[List[Example], LoadReport]:
    """
    校验并构建示例列表

    Args:
        records: 原始记录（字段支持 snake_case 和 camelCase）
        source: 数据来源（仅用于日志和报告）

    Returns:
        (examples, report)
    """
    examples: List[Example] = []
    report = LoadReport(source=source)
    seen_ids = set()

    for index, record in enumerate(records):
        if not isinstance(record, dict):
            report.quarantined.append({"index": index, "reason": "record is not an object"})
            logger.warning(f"Quarantined example #{index}: record is not an object")
            continue

        data = dict(record)
        if not data.get("id"):
            data["id"] = f"curated_{index + 1}"

        try:
            example = Example.model_validate(data)
        except ValidationError as e:
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            report.quarantined.append({"index": index, "id": data["id"], "reason": errors})
            logger.warning(f"Quarantined example {data['id']}: {errors}")
            continue

        if example.id in seen_ids:
            report.quarantined.append({"index": index, "id": example.id, "reason": "duplicate id"})
            logger.warning(f"Quarantined example {example.id}: duplicate id")
            continue

        seen_ids.add(example.id)
        examples.append(example)

    report.loaded = len(examples)
    logger.info(
        f"Loaded {report.loaded} examples"
        f"{f' from {source}' if source else ''}, quarantined {len(report.quarantined)}"
    )
    return examples, report


def load_examples_from_file(path: Union[str, Path]) -> Tuple[List[Example], LoadReport]:
    """从 JSON 文件加载示例"""
    path = Path(path)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to read example dataset {path}: {e}")
        raise DatasetError(f"Cannot load example dataset '{path}': {e}") from e

    if isinstance(payload, dict):
        records = payload.get("examples")
    else:
        records = payload

    if not isinstance(records, list):
        raise DatasetError(f"Example dataset '{path}' must contain an 'examples' list")

    return load_examples_from_records(records, source=str(path))


def load_default_examples() -> Tuple[List[Example], LoadReport]:
    """加载包内自带的精选示例"""
    return load_examples_from_file(DEFAULT_DATASET_PATH)
