from .service import PackCommandService, PackServices
from .state import PackSessionState, computeHash

__all__ = ["PackCommandService", "PackServices", "PackSessionState", "computeHash"]
