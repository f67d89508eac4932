"""
进程内 LangGraph 运行时

用 LangGraph StateGraph + checkpointer 模拟托管助手的 thread / run 语义：
- thread_id 就是 checkpointer 的 thread_id，对话历史由 checkpointer 保存
- 每个 run 是一个 asyncio task，调用方和远程运行时一样轮询状态
- 同一个 thread 同时只允许一个进行中的 run，重叠请求抛出 ThreadBusyError
- 结束的 run 只保留最近 max_finished_runs 个供轮询读取，更早的被淘汰
"""

import asyncio
import logging
import uuid
from collections import OrderedDict
from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional, TypedDict

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, StateGraph, add_messages
from langgraph.graph.state import RunnableConfig

from resume_assistant.assistant.errors import ThreadBusyError, ThreadNotFoundError
from resume_assistant.assistant.runtime import AssistantRun, RunStatus, ThreadMessage
from resume_assistant.models.base import utc_now

logger = logging.getLogger(__name__)

MAX_FINISHED_RUNS = 1000


class AssistantGraphState(TypedDict, total=False):
    """
    助手图状态

    messages 由 add_messages 合并，checkpointer 按 thread_id 持久化
    """

    # 对话历史
    messages: Annotated[List[BaseMessage], add_messages]

    # 本轮 run 的指令覆盖（不进入 messages）
    instructions: str


def _content_to_text(content: Any) -> str:
    """把 LangChain 消息 content（str 或块列表）转成纯文本"""
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def _stamp(message: BaseMessage, run_id: Optional[str] = None) -> BaseMessage:
    """为消息补上 id 和创建时间"""
    message.additional_kwargs.setdefault("created_at", utc_now().isoformat())
    if run_id:
        message.additional_kwargs.setdefault("run_id", run_id)
    if not message.id:
        message.id = str(uuid.uuid4())
    return message


def create_assistant_graph(llm: Any, checkpointer=None):
    """
    创建助手工作流图

    工作流说明：
    1. assistant_node (入口) - 以本轮指令 + 对话历史调用 LLM
    2. END

    Args:
        llm: LangChain 聊天模型
        checkpointer: LangGraph checkpointer（默认 MemorySaver）

    Returns:
        编译后的 LangGraph 应用
    """

    async def assistant_node(state: AssistantGraphState, config: RunnableConfig) -> Dict[str, Any]:
        history = list(state.get("messages", []))
        prompt: List[BaseMessage] = []
        if state.get("instructions"):
            prompt.append(SystemMessage(content=state["instructions"]))
        prompt.extend(history)

        response = await llm.ainvoke(prompt)
        run_id = config.get("configurable", {}).get("run_id")
        reply = AIMessage(content=_content_to_text(response.content))
        return {"messages": [_stamp(reply, run_id)]}

    workflow = StateGraph(AssistantGraphState)
    workflow.add_node("assistant_node", assistant_node)
    workflow.set_entry_point("assistant_node")
    workflow.add_edge("assistant_node", END)

    return workflow.compile(checkpointer=checkpointer or MemorySaver())


class GraphAssistantRuntime:
    """
    LangGraph 运行时

    使用示例：
        runtime = GraphAssistantRuntime(llm=get_llm())
        thread_id = await runtime.create_thread()
    """

    assistant_id = "langgraph-resume-assistant"

    def __init__(self, llm: Any, checkpointer=None, max_finished_runs: int = MAX_FINISHED_RUNS):
        self.graph = create_assistant_graph(llm, checkpointer)
        self._threads: set = set()
        # 已追加但尚未被 run 消费的用户消息
        self._pending: Dict[str, List[BaseMessage]] = {}
        self._runs: Dict[str, AssistantRun] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._active_run: Dict[str, str] = {}
        # 已结束 run 的 id，按结束顺序排列
        self._finished: "OrderedDict[str, None]" = OrderedDict()
        self.max_finished_runs = max_finished_runs

    def _config(self, thread_id: str, run_id: Optional[str] = None) -> Dict[str, Any]:
        configurable = {"thread_id": thread_id}
        if run_id:
            configurable["run_id"] = run_id
        return {"configurable": configurable}

    def _ensure_thread(self, thread_id: str) -> None:
        if thread_id not in self._threads:
            raise ThreadNotFoundError(thread_id)

    def _ensure_idle(self, thread_id: str) -> None:
        active = self._active_run.get(thread_id)
        run = self._runs.get(active) if active else None
        if run is not None and not run.status.is_terminal:
            raise ThreadBusyError(thread_id, f"run {active} is active")

    async def create_thread(self) -> str:
        thread_id = f"thread_{uuid.uuid4().hex}"
        self._threads.add(thread_id)
        self._pending[thread_id] = []
        logger.info("[GraphAssistantRuntime] Created new thread: %s", thread_id)
        return thread_id

    async def retrieve_thread(self, thread_id: str) -> str:
        self._ensure_thread(thread_id)
        return thread_id

    async def add_user_message(self, thread_id: str, content: str) -> str:
        self._ensure_thread(thread_id)
        self._ensure_idle(thread_id)
        message = _stamp(HumanMessage(content=content))
        self._pending[thread_id].append(message)
        return message.id

    async def create_run(self, thread_id: str, instructions: Optional[str] = None) -> AssistantRun:
        self._ensure_thread(thread_id)
        self._ensure_idle(thread_id)

        run_id = f"run_{uuid.uuid4().hex}"
        run = AssistantRun(run_id=run_id, thread_id=thread_id, status=RunStatus.QUEUED)
        self._runs[run_id] = run
        self._active_run[thread_id] = run_id

        pending = self._pending[thread_id]
        self._pending[thread_id] = []
        self._tasks[run_id] = asyncio.create_task(self._execute(run, pending, instructions))
        return run.model_copy()

    async def _execute(self, run: AssistantRun, pending: List[BaseMessage], instructions: Optional[str]) -> None:
        run.status = RunStatus.IN_PROGRESS
        graph_input: Dict[str, Any] = {"messages": pending, "instructions": instructions or ""}
        try:
            await self.graph.ainvoke(graph_input, config=self._config(run.thread_id, run.run_id))
        except Exception as e:
            # run 失败通过状态暴露给轮询方，不在 task 中抛出
            logger.error("[GraphAssistantRuntime] Run %s failed: %s", run.run_id, e)
            run.status = RunStatus.FAILED
            run.last_error = str(e)
        else:
            run.status = RunStatus.COMPLETED
        finally:
            self._finish(run)

    def _finish(self, run: AssistantRun) -> None:
        """释放 run 占用的 thread，并淘汰超出上限的旧 run"""
        self._tasks.pop(run.run_id, None)
        if self._active_run.get(run.thread_id) == run.run_id:
            del self._active_run[run.thread_id]
        if run.run_id in self._finished:
            return

        self._finished[run.run_id] = None
        while len(self._finished) > self.max_finished_runs:
            evicted, _ = self._finished.popitem(last=False)
            self._runs.pop(evicted, None)

    async def retrieve_run(self, thread_id: str, run_id: str) -> AssistantRun:
        run = self._runs.get(run_id)
        if run is None or run.thread_id != thread_id:
            raise ThreadNotFoundError(thread_id)
        return run.model_copy()

    async def cancel_run(self, thread_id: str, run_id: str) -> AssistantRun:
        """取消进行中的 run"""
        run = self._runs.get(run_id)
        if run is None or run.thread_id != thread_id:
            raise ThreadNotFoundError(thread_id)
        task = self._tasks.get(run_id)
        if task is not None and not task.done():
            task.cancel()
            run.status = RunStatus.CANCELLED
            # 还没开始执行的 task 被取消时不会进入 _execute 的 finally
            self._finish(run)
        return run.model_copy()

    async def list_messages(self, thread_id: str) -> List[ThreadMessage]:
        """列出 thread 消息（最新的在前，和 Assistants API 的默认顺序一致）"""
        self._ensure_thread(thread_id)
        snapshot = await self.graph.aget_state(self._config(thread_id))
        history = list((snapshot.values or {}).get("messages", [])) if snapshot else []
        history.extend(self._pending.get(thread_id, []))

        messages = []
        for message in history:
            role = "user" if isinstance(message, HumanMessage) else "assistant"
            created_at = message.additional_kwargs.get("created_at")
            messages.append(ThreadMessage(
                message_id=message.id,
                role=role,
                text=_content_to_text(message.content),
                created_at=datetime.fromisoformat(created_at) if created_at else utc_now(),
                run_id=message.additional_kwargs.get("run_id")
            ))
        messages.reverse()
        return messages
