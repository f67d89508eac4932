# Prompt templates

from typing import Optional

# ============================================================
# 简历助手 run 级指令 (Per-run Instructions)
# ============================================================

RESUME_ASSISTANT_SYSTEM_PROMPT = """You are a professional resume writing assistant. Help the user improve their resume.
Your primary goal is to help them make their resume more impactful, professional, and tailored to their target job.
{job_block}{resume_block}
If asked to optimize or improve a section, provide specific, actionable suggestions.
When appropriate, provide a revised version of the text that the user can directly apply to their resume.
Wrap that revised version in a single ``` fenced block.
Always be respectful, professional, and encouraging."""

JOB_CONTEXT_TEMPLATE = 'The user is applying for "{job_title}" at "{company_name}". The job description is: {job_description}'

UNKNOWN_JOB_TITLE = "Unknown position"
UNKNOWN_COMPANY = "Unknown company"


def build_system_prompt(job_context: Optional[str] = None, resume_content: Optional[str] = None) -> str:
    """
    组装本轮 run 的指令

    Args:
        job_context: 职位上下文（可选）
        resume_content: 当前分区内容（可选）

    Returns:
        完整的指令文本
    """
    job_block = f"\nJob Context:\n{job_context}\n" if job_context else ""
    resume_block = f"\nCurrent section content:\n{resume_content}\n" if resume_content else ""
    return RESUME_ASSISTANT_SYSTEM_PROMPT.format(job_block=job_block, resume_block=resume_block)


# ============================================================
# 客户端会话文案 (Client Conversation Copy)
# ============================================================

WELCOME_MESSAGES = [
    "Hey there! Your resume is glowing now, but shall we explore what else we can enhance? I've got some magical tricks up my tentacles!",
    "Curious about how I transformed your resume? Let's chat about my secrets and see if we've missed any important points!",
    "My tentacles sense there's still some hidden potential in your resume! Want to explore together?",
]

# 服务端兜底回复：调用失败时仍然给 UI 一段可以渲染的文本
FALLBACK_REPLY = "I'm experiencing technical difficulties. Please try again later."

# 客户端错误占位回复
ERROR_PLACEHOLDER_REPLY = "Sorry, I encountered an error while processing your request. Please try again."

API_ERROR_NOTICE = "Failed to connect to AI service. Please try again."
MISSING_ANALYSIS_NOTICE = "Unable to identify the current resume analysis. Try refreshing the page."
EMPTY_SECTION_NOTICE = "Please select a section with content first."

SUGGESTION_NOTICE = "I've created a suggestion for your resume. You can apply it by clicking the 'Apply' button."

OPTIMIZE_SECTION_PROMPT = 'Please optimize this resume section to make it more professional and impactful: "{content}"'

TURN_FAILED_NOTICE = "Failed to get AI response. Please try again."
HISTORY_LOAD_FAILED_NOTICE = "We couldn't load your previous messages."
EMPTY_MESSAGE_NOTICE = "Please enter a message first."
