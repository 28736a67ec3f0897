"""
ModLock - 跨平台的模组依赖解析与锁定工具

从 Modrinth、CurseForge 解析模组、资源包和光影，
构建去重的必需依赖闭包并写入锁文件。
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
