import os
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_NAME: str = "nlsql"

    # ==========================================
    # 示例排序配置
    # ==========================================
    # ExampleRanker 按以下权重计算 final_score（总和应为 1.0）
    # ==========================================
    SIMILARITY_WEIGHT: float = float(os.getenv("SIMILARITY_WEIGHT", "0.35"))  # 文本相似度
    RELEVANCE_WEIGHT: float = float(os.getenv("RELEVANCE_WEIGHT", "0.25"))    # Schema 相关度
    QUALITY_WEIGHT: float = float(os.getenv("QUALITY_WEIGHT", "0.20"))        # 质量评分
    SUCCESS_WEIGHT: float = float(os.getenv("SUCCESS_WEIGHT", "0.15"))        # 历史成功率
    USAGE_WEIGHT: float = float(os.getenv("USAGE_WEIGHT", "0.05"))            # 使用次数

    # ==========================================
    # 示例库配置
    # ==========================================
    # 未配置路径时加载包内自带的 curated_examples.json
    EXAMPLE_DATASET_PATH: Optional[str] = os.getenv("EXAMPLE_DATASET_PATH") or None

    # 候选为空时的质量兜底：取 quality_score >= 阈值的前 N 个示例
    FALLBACK_QUALITY_THRESHOLD: float = float(os.getenv("FALLBACK_QUALITY_THRESHOLD", "85"))
    FALLBACK_EXAMPLE_LIMIT: int = int(os.getenv("FALLBACK_EXAMPLE_LIMIT", "10"))

    # 每次查询返回的示例数量（Top-K）
    MAX_EXAMPLES_PER_QUERY: int = int(os.getenv("MAX_EXAMPLES_PER_QUERY", "5"))

    # ==========================================
    # 模型编排配置
    # ==========================================
    # 回退链最多尝试的后端数量
    MAX_FALLBACK_ATTEMPTS: int = int(os.getenv("MAX_FALLBACK_ATTEMPTS", "3"))

    # 集成模式并发调用的后端数量
    ENSEMBLE_SIZE: int = int(os.getenv("ENSEMBLE_SIZE", "3"))
    ENSEMBLE_ENABLED: bool = os.getenv("ENSEMBLE_ENABLED", "true").lower() == "true"

    # 单次后端调用超时（秒），0 表示不限制
    BACKEND_CALL_TIMEOUT: float = float(os.getenv("BACKEND_CALL_TIMEOUT", "30.0"))

    DEFAULT_SQL_DIALECT: str = os.getenv("DEFAULT_SQL_DIALECT", "postgresql")

    # ==========================================
    # 性能记录配置
    # ==========================================
    # 环形缓冲区容量，超出后淘汰最旧的记录
    PERFORMANCE_HISTORY_LIMIT: int = int(os.getenv("PERFORMANCE_HISTORY_LIMIT", "1000"))
    # 近期表现统计窗口（天）
    PERFORMANCE_WINDOW_DAYS: int = int(os.getenv("PERFORMANCE_WINDOW_DAYS", "30"))
    # 近期样本数达到该值后才用历史表现替换先验分数
    MIN_SAMPLES_FOR_HISTORY: int = int(os.getenv("MIN_SAMPLES_FOR_HISTORY", "10"))
    # 每个模型参与统计的最近样本数
    RECENT_SAMPLE_LIMIT: int = int(os.getenv("RECENT_SAMPLE_LIMIT", "50"))

    # ==========================================
    # Provider 配置
    # ==========================================
    # 对应后端的 is_configured 由是否提供 API Key 决定
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_API_BASE: Optional[str] = os.getenv("OPENAI_API_BASE") or None
    ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY", "")
    GOOGLE_API_KEY: str = os.getenv("GOOGLE_API_KEY", "")
    HUGGING_FACE_API_KEY: str = os.getenv("HUGGING_FACE_API_KEY", "")
    COHERE_API_KEY: str = os.getenv("COHERE_API_KEY", "")

    # LLM 调用参数
    LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.0"))
    LLM_MAX_TOKENS: int = int(os.getenv("LLM_MAX_TOKENS", "2048"))

    class Config:
        case_sensitive = True
        env_file = ".env"
        extra = 'ignore'  # 忽略.env中未在Settings类中定义的额外字段

settings = Settings()
