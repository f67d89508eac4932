"""
Services 模块 - 业务逻辑层
"""

from .assistant_turn_service import AssistantTurnService

__all__ = ["AssistantTurnService"]
