"""
客户端会话状态机

状态流转：
    idle -> sending -> awaiting_completion -> idle      成功
    idle -> sending -> (awaiting_completion) -> error   失败，error 状态可以 send / retry

约束：
- 同一会话同时最多一个进行中的请求，进行中的 send / retry 直接忽略
- 用户消息乐观追加；失败时追加错误占位回复（不落库）
- 成功后无条件采用服务端返回的 threadId
- 身份键变化或 close 之后，旧请求的结果直接丢弃
- 重试时被替换的旧回复同时从存储中删除，对话记录里不会出现两条回复
"""

import logging
import random
from datetime import timedelta
from enum import Enum
from typing import Callable, List, Optional, Sequence

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from resume_assistant.assistant.prompts import (
    API_ERROR_NOTICE,
    EMPTY_MESSAGE_NOTICE,
    EMPTY_SECTION_NOTICE,
    ERROR_PLACEHOLDER_REPLY,
    HISTORY_LOAD_FAILED_NOTICE,
    MISSING_ANALYSIS_NOTICE,
    OPTIMIZE_SECTION_PROMPT,
    SUGGESTION_NOTICE,
    TURN_FAILED_NOTICE,
    WELCOME_MESSAGES,
)
from resume_assistant.conversation.backend import ConversationBackend, ConversationBackendError
from resume_assistant.conversation.context_fetcher import ContextFetcher
from resume_assistant.conversation.context_resolver import resolve_identity_key
from resume_assistant.conversation.thread_locator import NOT_FOUND
from resume_assistant.models.message import MessageRole
from resume_assistant.schemas.assistant_turn import AssistantTurnRequest
from resume_assistant.schemas.conversation import MessagePayload

logger = logging.getLogger(__name__)

# 加载历史时，同一角色、同样内容且间隔不超过该时长的消息视为重复
DUPLICATE_WINDOW = timedelta(seconds=5)


class ConversationState(str, Enum):
    """会话状态"""
    IDLE = "idle"
    SENDING = "sending"
    AWAITING_COMPLETION = "awaiting_completion"
    ERROR = "error"


class TranscriptMessage(MessagePayload):
    """界面上的一条消息，is_error 标记错误占位回复"""
    is_error: bool = False

    def to_payload(self) -> MessagePayload:
        return MessagePayload(**self.model_dump(exclude={"is_error"}))


class Notice(BaseModel):
    """提示（toast）"""
    title: str
    description: str
    variant: str = "default"


def dedupe_transcript(messages: Sequence[MessagePayload]) -> List[MessagePayload]:
    """
    去掉重复消息：角色和内容都相同且时间间隔不超过 DUPLICATE_WINDOW 的只保留第一条
    """
    unique = []
    seen = {}
    for message in messages:
        key = (message.role, message.content)
        previous = seen.get(key)
        if previous is not None and abs(message.timestamp - previous) <= DUPLICATE_WINDOW:
            logger.debug("[ConversationStateMachine] Filtered out duplicate message: %s", message.id)
            continue
        unique.append(message)
        seen[key] = message.timestamp
    return unique


class ConversationStateMachine:
    """
    会话状态机

    同一套实现被聊天面板和弹窗等多个界面各自实例化。

    使用示例：
        machine = ConversationStateMachine(backend, notifier=show_toast)
        await machine.navigate(path="/resume/1b4e28ba-2fa1-11d2-883f-0016d3cca427/optimize")
        await machine.send("How can I improve my skills section?")
    """

    def __init__(
        self,
        backend: ConversationBackend,
        notifier: Optional[Callable[[Notice], None]] = None,
        on_suggestion_apply: Optional[Callable[[str, Optional[str]], None]] = None,
        current_section: Optional[str] = None,
        choose: Callable[[Sequence[str]], str] = random.choice
    ):
        """
        Args:
            backend: 会话后端
            notifier: 提示回调
            on_suggestion_apply: 应用建议的回调 (suggestion, section)
            current_section: 当前编辑的简历分区
            choose: 欢迎语选择函数（测试中可替换）
        """
        self.backend = backend
        self.notifier = notifier
        self.on_suggestion_apply = on_suggestion_apply
        self.current_section = current_section
        self._choose = choose

        self.identity_key: Optional[str] = None
        self.thread_id: Optional[str] = None
        self.state = ConversationState.IDLE
        self.messages: List[TranscriptMessage] = []
        self.input_text = ""
        self.error: Optional[str] = None

        self._fetcher = ContextFetcher(backend.fetch_resume_content)
        self._persisted_ids: set = set()
        # 每次切换会话 +1，旧请求据此判断结果是否还有效
        self._generation = 0
        self._closed = False

    # ==================== 状态查询 ====================

    @property
    def in_flight(self) -> bool:
        return self.state in (ConversationState.SENDING, ConversationState.AWAITING_COMPLETION)

    @property
    def seeded(self) -> bool:
        return self._fetcher.seeded

    def _is_stale(self, generation: int) -> bool:
        return self._closed or generation != self._generation

    def _notify(self, title: str, description: str, variant: str = "default") -> None:
        if self.notifier is not None:
            self.notifier(Notice(title=title, description=description, variant=variant))

    # ==================== 会话生命周期 ====================

    async def navigate(
        self,
        explicit_id: Optional[str] = None,
        route_params=None,
        path=None,
        navigation_state=None
    ) -> Optional[str]:
        """
        导航位置变化：重新解析身份键，变化时重置会话并加载

        Returns:
            新的身份键（可能为 None）
        """
        if self._closed:
            return None

        key = resolve_identity_key(explicit_id, route_params, path, navigation_state)
        if key is not None and key == self.identity_key and self.messages:
            return key

        if key != self.identity_key:
            self._reset()
            self.identity_key = key

        if key is None:
            self._notify("Error", MISSING_ANALYSIS_NOTICE, "destructive")
            return None

        await self.load()
        return key

    def _reset(self) -> None:
        self._generation += 1
        self.thread_id = None
        self._fetcher.reset()
        self._persisted_ids = set()
        self.messages = []
        self.input_text = ""
        self.error = None
        self.state = ConversationState.IDLE

    def close(self) -> None:
        """离开页面：进行中的请求结果全部丢弃，之后不再更新状态"""
        self._closed = True
        self._generation += 1
        logger.info("[ConversationStateMachine] Conversation closed: %s", self.identity_key)

    async def load(self) -> None:
        """
        进入会话时加载：定位 thread、读取对话记录，没有记录时写入欢迎语
        """
        key = self.identity_key
        if key is None or self._closed:
            return
        generation = self._generation
        logger.info("[ConversationStateMachine] Loading chat history for analysis: %s", key)

        try:
            location = await self.backend.locate_thread(key)
        except (ConversationBackendError, SQLAlchemyError) as e:
            logger.error("[ConversationStateMachine] Error locating thread: %s", e)
            location = NOT_FOUND
        if self._is_stale(generation):
            return

        if location.found:
            self.thread_id = location.thread_id
        if location.already_seeded:
            self._fetcher.mark_seeded()

        try:
            transcript = await self.backend.load_transcript(key)
        except (ConversationBackendError, SQLAlchemyError) as e:
            logger.error("[ConversationStateMachine] Error loading chat history: %s", e)
            if not self._is_stale(generation):
                self._notify("Error loading chat history", HISTORY_LOAD_FAILED_NOTICE, "destructive")
            return
        if self._is_stale(generation):
            return

        transcript = [message for message in transcript if message.role != MessageRole.SYSTEM]
        if transcript:
            self.messages = [
                TranscriptMessage(**message.model_dump()) for message in dedupe_transcript(transcript)
            ]
            self._persisted_ids.update(message.id for message in transcript)
            if self.thread_id is None and self.messages[0].thread_id:
                self.thread_id = self.messages[0].thread_id
            logger.info("[ConversationStateMachine] Loaded %d messages for analysis: %s", len(self.messages), key)
            return

        welcome = TranscriptMessage(
            role=MessageRole.ASSISTANT,
            content=await self._welcome_text(key),
            thread_id=self.thread_id
        )
        if self._is_stale(generation):
            return
        self.messages = [welcome]
        await self._persist(welcome)
        logger.info("[ConversationStateMachine] No existing messages, created welcome message")

    async def _welcome_text(self, key: str) -> str:
        greeting = self._choose(WELCOME_MESSAGES)
        try:
            guidance = await self.backend.fetch_guidance(key)
        except (ConversationBackendError, SQLAlchemyError) as e:
            logger.warning("[ConversationStateMachine] Error fetching guidance: %s", e)
            guidance = None
        if guidance:
            return f"{greeting}\n\n{guidance}"
        return greeting

    # ==================== 发送 / 重试 ====================

    async def send(self, text: Optional[str] = None) -> bool:
        """
        发送一条用户消息（默认发送输入框内容）

        Returns:
            是否被接受；空消息、无身份键、已有进行中的请求时返回 False
        """
        if self._closed or self.in_flight:
            return False

        text = self.input_text if text is None else text
        if not text or not text.strip():
            self._notify("Empty message", EMPTY_MESSAGE_NOTICE)
            return False

        if self.identity_key is None:
            self._notify("Error", MISSING_ANALYSIS_NOTICE, "destructive")
            return False

        # 进入 sending 之前不能有 await，保证同一时刻只接受一个请求
        self.state = ConversationState.SENDING
        self.error = None
        generation = self._generation

        user_message = TranscriptMessage(
            role=MessageRole.USER,
            content=text,
            section=self.current_section,
            thread_id=self.thread_id
        )
        self.messages.append(user_message)
        self.input_text = ""

        await self._persist(user_message)
        if self._is_stale(generation):
            return True
        await self._run_turn(user_message, generation)
        return True

    async def retry(self) -> bool:
        """
        原样重发最后一条用户消息，不追加新的用户消息

        Returns:
            是否被接受
        """
        if self._closed or self.in_flight:
            return False

        if self.identity_key is None:
            self._notify("Error", MISSING_ANALYSIS_NOTICE, "destructive")
            return False

        index = self._last_user_index()
        if index is None:
            return False

        self.state = ConversationState.SENDING
        self.error = None
        generation = self._generation

        # 移除最后一条用户消息之后的助手回复（错误占位或旧回复），已落库的旧回复同时删除
        replaced = self.messages[index + 1:]
        del self.messages[index + 1:]
        for message in replaced:
            await self._forget(message)
        if self._is_stale(generation):
            return True
        await self._run_turn(self.messages[index], generation)
        return True

    def _last_user_index(self) -> Optional[int]:
        for index in range(len(self.messages) - 1, -1, -1):
            if self.messages[index].role == MessageRole.USER:
                return index
        return None

    async def _run_turn(self, user_message: TranscriptMessage, generation: int) -> None:
        key = self.identity_key

        resume_content = await self._fetcher.fetch_once(key)
        if resume_content:
            logger.info("[ConversationStateMachine] Sending resume content with first message")
        if self._is_stale(generation):
            return

        request = AssistantTurnRequest(
            message=user_message.content,
            analysis_id=key,
            current_section=user_message.section,
            thread_id=self.thread_id,
            resume_content=resume_content
        )
        self.state = ConversationState.AWAITING_COMPLETION
        logger.info("[ConversationStateMachine] Using thread ID: %s", self.thread_id or "new thread")

        try:
            response = await self.backend.send_turn(request)
        except ConversationBackendError as e:
            if self._is_stale(generation):
                logger.info("[ConversationStateMachine] Discarding failed turn for previous conversation")
                return
            self._fail(e)
            return
        except Exception as e:
            # 后端的意外异常同样按失败处理，不能让状态停在 awaiting_completion
            logger.exception("[ConversationStateMachine] Unexpected error from conversation backend")
            if not self._is_stale(generation):
                self._fail(e)
            return

        if self._is_stale(generation):
            logger.info("[ConversationStateMachine] Discarding response for previous conversation")
            return

        self.thread_id = response.thread_id
        content = response.message
        if response.suggestion:
            content = f"{content}\n\n{SUGGESTION_NOTICE}"

        assistant_message = TranscriptMessage(
            role=MessageRole.ASSISTANT,
            content=content,
            section=user_message.section,
            suggestion=response.suggestion,
            thread_id=response.thread_id
        )
        self.messages.append(assistant_message)
        await self._persist(assistant_message)

        if not self._is_stale(generation):
            self.state = ConversationState.IDLE

    def _fail(self, error: Exception) -> None:
        logger.error("[ConversationStateMachine] Error getting AI response: %s", error)
        self.messages.append(TranscriptMessage(
            role=MessageRole.ASSISTANT,
            content=ERROR_PLACEHOLDER_REPLY,
            is_error=True
        ))
        self.error = API_ERROR_NOTICE
        self._notify("Error", TURN_FAILED_NOTICE, "destructive")
        self.state = ConversationState.ERROR

    async def _persist(self, message: TranscriptMessage) -> None:
        """保存消息（同一个 id 只提交一次），失败只记录日志"""
        if message.is_error or self.identity_key is None:
            return
        if message.id in self._persisted_ids:
            logger.debug("[ConversationStateMachine] Skipping already processed message: %s", message.id)
            return
        self._persisted_ids.add(message.id)

        try:
            await self.backend.save_message(self.identity_key, message.to_payload())
        except (ConversationBackendError, SQLAlchemyError) as e:
            logger.error("[ConversationStateMachine] Error saving chat message %s: %s", message.id, e)

    async def _forget(self, message: TranscriptMessage) -> None:
        """删除已落库的消息（重试替换旧回复时使用），失败只记录日志"""
        if message.id not in self._persisted_ids or self.identity_key is None:
            return
        self._persisted_ids.discard(message.id)

        try:
            await self.backend.delete_message(self.identity_key, message.id)
        except (ConversationBackendError, SQLAlchemyError) as e:
            logger.error("[ConversationStateMachine] Error deleting chat message %s: %s", message.id, e)

    # ==================== 界面辅助 ====================

    def set_section(self, section: Optional[str]) -> None:
        self.current_section = section

    def apply_suggestion(self, message: MessagePayload) -> bool:
        """把消息中的建议交给编辑器"""
        if not message.suggestion or self.on_suggestion_apply is None:
            return False
        self.on_suggestion_apply(message.suggestion, message.section)
        return True

    def optimize_section_prompt(self, content: Optional[str]) -> bool:
        """用"优化本分区"的提示词填充输入框；分区为空时提示并保持输入框不变"""
        if not content or not content.strip():
            self._notify("No content", EMPTY_SECTION_NOTICE)
            return False
        self.input_text = OPTIMIZE_SECTION_PROMPT.format(content=content)
        return True
