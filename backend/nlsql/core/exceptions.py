"""
异常定义

错误分类：
- ConfigurationError: 没有已配置的后端支持请求的方言（致命，不重试）
- ValidationFailure: 生成的 SQL 存在语法错误（可恢复，触发回退）
- BackendInvocationFailure: 后端调用失败（网络/Provider 错误，可恢复）
- RetryBudgetExhausted: 回退次数用尽（终止）
- EnsembleTotalFailure: 集成模式下所有后端均失败（终止）
- DatasetError: 示例库文件无法读取或解析
"""
from typing import Dict, List, Optional, Sequence


class NLSQLError(Exception):
    """所有业务异常的基类"""


class ConfigurationError(NLSQLError):
    """没有可用后端支持当前方言"""

    def __init__(self, dialect: str, message: Optional[str] = None):
        self.dialect = dialect
        super().__init__(
            message or f"No configured models available for the '{dialect}' dialect"
        )


class ValidationFailure(NLSQLError):
    """生成的 SQL 未通过语法校验"""

    def __init__(self, model_id: str, syntax_errors: Sequence[str]):
        self.model_id = model_id
        self.syntax_errors = list(syntax_errors)
        super().__init__(f"Validation failed: {', '.join(self.syntax_errors)}")


class BackendInvocationFailure(NLSQLError):
    """后端调用失败"""

    def __init__(self, model_id: str, message: str, error_type: str = "unknown"):
        self.model_id = model_id
        self.error_type = error_type
        super().__init__(f"Model '{model_id}' failed ({error_type}): {message}")


class RetryBudgetExhausted(NLSQLError):
    """回退链已用尽"""

    def __init__(self, attempted_models: Sequence[str], last_error: Optional[str]):
        self.attempted_models = list(attempted_models)
        self.last_error = last_error
        attempted = ", ".join(self.attempted_models) or "none"
        super().__init__(
            f"All fallback attempts failed (attempted: {attempted}). "
            f"Last error: {last_error}"
        )


class EnsembleTotalFailure(NLSQLError):
    """集成模式下所有后端均失败"""

    def __init__(self, attempted_models: Sequence[str], errors: Dict[str, str]):
        self.attempted_models = list(attempted_models)
        self.errors = dict(errors)
        details = "; ".join(f"{model}: {err}" for model, err in self.errors.items())
        super().__init__(
            f"All ensemble models failed (attempted: {', '.join(self.attempted_models)}). "
            f"Errors: {details}"
        )

    @property
    def last_error(self) -> Optional[str]:
        if not self.errors:
            return None
        return list(self.errors.values())[-1]


class DatasetError(NLSQLError):
    """示例库加载失败"""


__all__: List[str] = [
    "NLSQLError",
    "ConfigurationError",
    "ValidationFailure",
    "BackendInvocationFailure",
    "RetryBudgetExhausted",
    "EnsembleTotalFailure",
    "DatasetError",
]
