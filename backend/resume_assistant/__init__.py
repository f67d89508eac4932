"""
简历助手对话编排

为简历优化产品的 AI 助手提供：会话身份解析、thread 定位、上下文准备、
轮询式助手调用、回复解析、幂等持久化以及客户端会话状态机。
"""

__version__ = "0.1.0"
