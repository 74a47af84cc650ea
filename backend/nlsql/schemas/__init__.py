from .schema_context import (
    ColumnInfo,
    ForeignKeyInfo,
    TableSchema,
    RelationshipInfo,
    SchemaDescription,
)
from .example import (
    PatternCategory,
    Complexity,
    PatternTag,
    Example,
    RankedExample,
    LoadReport,
)
from .generation import (
    QueryCategory,
    GenerationContext,
    BackendOutput,
    ValidationResult,
    GenerationResult,
    EnsembleResult,
)
from .text2sql import (
    Text2SQLRequest,
    Text2SQLResponse,
    IntentSummary,
    EnsembleInfo,
    FeedbackRequest,
)

__all__ = [
    "ColumnInfo",
    "ForeignKeyInfo",
    "TableSchema",
    "RelationshipInfo",
    "SchemaDescription",
    "PatternCategory",
    "Complexity",
    "PatternTag",
    "Example",
    "RankedExample",
    "LoadReport",
    "QueryCategory",
    "GenerationContext",
    "BackendOutput",
    "ValidationResult",
    "GenerationResult",
    "EnsembleResult",
    "Text2SQLRequest",
    "Text2SQLResponse",
    "IntentSummary",
    "EnsembleInfo",
    "FeedbackRequest",
]
