"""
应用上下文

集中构建各组件（不使用全局单例），便于测试时整体替换：
示例检索引擎、模型注册表、SQL 验证器、后端调用器、编排器、意图识别器。

使用方式：
    ctx = AppContext.create()
    service = Text2SQLService(ctx)
"""
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from nlsql.core.config import Settings, settings as default_settings
from nlsql.core.model_registry import ModelDescriptor, ModelRegistry, SampleSink
from nlsql.schemas.example import Example
from nlsql.services.example_retrieval import ExampleRetrievalEngine
from nlsql.services.generation import BackendInvoker, GenerationOrchestrator, build_default_invoker
from nlsql.services.intent import IntentClassifier, RegexIntentClassifier
from nlsql.services.sql_validator import SQLValidator

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """组件容器"""
    settings: Settings
    retrieval: ExampleRetrievalEngine
    registry: ModelRegistry
    validator: Any
    invoker: BackendInvoker
    orchestrator: GenerationOrchestrator
    classifier: IntentClassifier

    @classmethod
    def create(cls, settings: Optional[Settings] = None,
               invoker: Optional[BackendInvoker] = None,
               validator: Any = None,
               examples: Optional[Iterable[Example]] = None,
               descriptors: Optional[Iterable[ModelDescriptor]] = None,
               classifier: Optional[IntentClassifier] = None,
               sample_sink: Optional[SampleSink] = None) -> "AppContext":
        """
        构建应用上下文

        Args:
            settings: 配置，默认使用全局 settings
            invoker: 后端调用器，默认 rule_based 走规则兜底、其余走 LangChain
            validator: SQL 验证器，默认 SQLValidator
            examples: 示例集合，默认按配置加载示例库
            descriptors: 模型描述，默认使用内置模型目录
            classifier: 意图识别器，默认 RegexIntentClassifier
            sample_sink: 性能样本回调（外部持久化）
        """
        cfg = settings or default_settings
        classifier = classifier or RegexIntentClassifier()
        validator = validator or SQLValidator()
        invoker = invoker or build_default_invoker(cfg, classifier)

        retrieval = ExampleRetrievalEngine.from_settings(cfg, examples=examples)
        registry = ModelRegistry(descriptors=descriptors, settings=cfg, sample_sink=sample_sink)
        orchestrator = GenerationOrchestrator(registry, invoker, validator, settings=cfg)

        logger.info(
            f"AppContext created: {len(retrieval)} examples, "
            f"{len(registry.get_available_models())} configured models"
        )
        return cls(
            settings=cfg,
            retrieval=retrieval,
            registry=registry,
            validator=validator,
            invoker=invoker,
            orchestrator=orchestrator,
            classifier=classifier,
        )
