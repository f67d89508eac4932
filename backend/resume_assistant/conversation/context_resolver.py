"""
会话身份解析

按固定优先级确定当前对话的身份键（analysis id）：
1. 显式传入的 ID
2. 路由参数 analysisId
3. URL 路径中符合 UUID 形状的片段（扫描全部片段，取最后一个）
4. 导航状态中的 analysisId

全部落空返回 None，调用方必须把 None 当作"无法开始对话"，不能带着降级身份继续。
导航位置变化时需要重新解析。
"""

import logging
import re
from typing import Any, Mapping, Optional, Sequence, Union

logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE
)

ANALYSIS_ID_KEY = "analysisId"


def is_identity_key(value: Any) -> bool:
    """判断值是否是 UUID 形状的字符串"""
    return isinstance(value, str) and bool(UUID_PATTERN.match(value))


def split_path(path: Union[str, Sequence[str], None]) -> list:
    """把 URL 路径（或已拆分的片段列表）拆成非空片段"""
    if path is None:
        return []
    if isinstance(path, str):
        # 去掉查询串和锚点
        path = path.split("?", 1)[0].split("#", 1)[0]
        return [segment for segment in path.split("/") if segment]
    return [segment for segment in path if segment]


def resolve_identity_key(
    explicit_id: Optional[str] = None,
    route_params: Optional[Mapping[str, Any]] = None,
    path: Union[str, Sequence[str], None] = None,
    navigation_state: Optional[Mapping[str, Any]] = None
) -> Optional[str]:
    """
    解析对话身份键

    Args:
        explicit_id: 显式传入的分析 ID
        route_params: 路由参数
        path: URL 路径字符串或片段列表
        navigation_state: 导航/跳转时携带的状态

    Returns:
        小写的 UUID 字符串；无法确定时返回 None
    """
    if is_identity_key(explicit_id):
        logger.debug("[ContextResolver] Using explicit analysis ID: %s", explicit_id)
        return explicit_id.lower()

    route_value = (route_params or {}).get(ANALYSIS_ID_KEY)
    if is_identity_key(route_value):
        logger.debug("[ContextResolver] Found analysis ID in route params: %s", route_value)
        return route_value.lower()

    candidates = [segment for segment in split_path(path) if is_identity_key(segment)]
    if candidates:
        logger.debug("[ContextResolver] Extracted analysis ID from URL path: %s", candidates[-1])
        return candidates[-1].lower()

    state_value = (navigation_state or {}).get(ANALYSIS_ID_KEY)
    if is_identity_key(state_value):
        logger.debug("[ContextResolver] Found analysis ID in navigation state: %s", state_value)
        return state_value.lower()

    logger.warning("[ContextResolver] Could not determine analysis ID from props, URL, or state")
    return None
