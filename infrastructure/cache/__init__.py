"""缓存层对外暴露的接口"""
from .permissions_cache import PermissionsCache

__all__ = ["PermissionsCache"]
