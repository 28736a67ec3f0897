"""
ModLock 统一异常体系

提供分层的异常结构，支持错误代码、上下文信息和 JSON 序列化。
"""

from typing import Any, Dict, Optional
import aiohttp


class ModLockError(Exception):
    """ModLock 基础异常类"""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self._get_default_code()
        self.context = context or {}

    def _get_default_code(self) -> str:
        """获取默认错误代码"""
        return "E000"

    def to_dict(self) -> Dict[str, Any]:
        """将异常转换为字典格式"""
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "type": self.__class__.__name__,
        }

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class ConfigError(ModLockError):
    """配置相关错误"""

    def _get_default_code(self) -> str:
        return "E100"


class ConfigParseError(ConfigError):
    """锁文件解析错误"""

    def _get_default_code(self) -> str:
        return "E101"


class ConfigValidationError(ConfigError):
    """锁文件上下文缺失或无效"""

    def _get_default_code(self) -> str:
        return "E102"


class APIError(ModLockError):
    """API 相关错误"""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        response: Optional[aiohttp.ClientResponse] = None,
    ):
        super().__init__(message, code, context)
        self.response = response
        if response is not None:
            self.context["status_code"] = response.status
            self.context["url"] = str(response.url)

    def _get_default_code(self) -> str:
        return "E200"


class APIRateLimitError(APIError):
    """API 速率限制"""

    def _get_default_code(self) -> str:
        return "E429"


class APIServerError(APIError):
    """API 服务器错误"""

    def _get_default_code(self) -> str:
        return "E500"


class ValidationError(ModLockError):
    """验证相关错误"""

    def _get_default_code(self) -> str:
        return "E500"


class UnrecognizedCategoryError(ValidationError):
    """平台返回的项目类别无法映射到 Mod/ResourcePack/Shader"""

    def _get_default_code(self) -> str:
        return "E501"


class ResolutionError(ModLockError):
    """解析相关错误，作为结果交给调用方，而不是中断整个批次"""

    def __init__(
        self,
        message: str,
        identifier: str = "",
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code, context)
        self.identifier = identifier
        if identifier:
            self.context.setdefault("identifier", identifier)

    def _get_default_code(self) -> str:
        return "E600"


class ProjectNotFoundError(ResolutionError):
    """所有平台都找不到该项目"""

    def _get_default_code(self) -> str:
        return "E601"


class AmbiguousMatchError(ResolutionError):
    """调用方拒绝了不确定的匹配"""

    def _get_default_code(self) -> str:
        return "E602"


class ProviderError(ResolutionError):
    """所有尝试的平台都发生了传输或解析错误"""

    def _get_default_code(self) -> str:
        return "E603"


class NoCompatibleFilesError(ResolutionError):
    """项目存在，但没有满足版本/加载器条件的文件"""

    def _get_default_code(self) -> str:
        return "E604"


class AlreadyAddedError(ResolutionError):
    """项目已经在锁文件中"""

    def _get_default_code(self) -> str:
        return "E605"


__all__ = [
    # 基础异常
    "ModLockError",
    # 配置异常
    "ConfigError",
    "ConfigParseError",
    "ConfigValidationError",
    # API 异常
    "APIError",
    "APIRateLimitError",
    "APIServerError",
    # 验证异常
    "ValidationError",
    "UnrecognizedCategoryError",
    # 解析异常
    "ResolutionError",
    "ProjectNotFoundError",
    "AmbiguousMatchError",
    "ProviderError",
    "NoCompatibleFilesError",
    "AlreadyAddedError",
]
