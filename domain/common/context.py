"""
请求上下文 - 显式传递操作者身份与来源IP，供审计归属使用
"""
from dataclasses import dataclass
from typing import Optional


SYSTEM_IP = "system"


@dataclass(frozen=True)
class RequestContext:
    """一次逻辑请求的归属信息（匿名请求 actor_id 为 None）"""

    actor_id: Optional[str] = None
    ip_address: str = SYSTEM_IP
    request_id: Optional[str] = None

    def with_actor(self, actor_id: Optional[str]) -> "RequestContext":
        return RequestContext(actor_id=actor_id, ip_address=self.ip_address, request_id=self.request_id)


SYSTEM_CONTEXT = RequestContext()
