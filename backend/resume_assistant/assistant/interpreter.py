"""
助手回复解析

约定：回复中第一个 ``` 围起来的区域就是可以一键应用到简历的建议，
只认第一个，后面的代码块保留在正文里。
"""

import re
from typing import Optional

from pydantic import BaseModel

# 非贪婪匹配第一个围栏区域
SUGGESTION_PATTERN = re.compile(r"```([\s\S]*?)```")


class InterpretedResponse(BaseModel):
    """解析结果"""
    display_text: str
    suggestion: Optional[str] = None


def extract_suggestion(raw_text: str) -> Optional[str]:
    """
    提取第一个围栏区域的内容（去除首尾空白）

    Returns:
        建议文本；没有围栏或围栏内为空时返回 None
    """
    if not raw_text:
        return None
    match = SUGGESTION_PATTERN.search(raw_text)
    if match is None:
        return None
    suggestion = match.group(1).strip()
    return suggestion or None


def interpret(raw_text: str) -> InterpretedResponse:
    """
    解析助手原始回复

    display_text 始终是原文，不做删改；suggestion 仅来自第一个围栏区域

    Example:
        >>> interpret("Sure, try:\\n```Improved text here```\\nGood luck").suggestion
        'Improved text here'
    """
    return InterpretedResponse(
        display_text=raw_text,
        suggestion=extract_suggestion(raw_text)
    )
