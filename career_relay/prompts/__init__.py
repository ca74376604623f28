"""系统提示词加载与渲染工具。

按语言(locale) 从 prompts/<locale> 目录读取 Markdown 模板，
用 str.format 填入公司、JD、简历等字段，生成 (system_prompt, user_message)。
JD/简历在不同场景下按固定长度截断，避免上下文过长。
"""

from pathlib import Path
from typing import Optional, Tuple


PROMPTS_DIR = Path(__file__).resolve().parent

LANGUAGE_NAMES = {
    "zh": "Simplified Chinese",
    "tw": "Traditional Chinese",
    "ja": "Japanese",
    "ko": "Korean",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "pt": "Portuguese",
    "ar": "Arabic",
}

JOB_INTEL_CONTEXT_LIMIT = 12000


def load_prompt(name: str, locale: str = "zh") -> str:
    """读取模板文本，name 不含扩展名，例如 "chat_system"。"""

    fname = PROMPTS_DIR / locale / f"{name}.md"
    return fname.read_text(encoding="utf-8").strip()


def language_instruction(language: Optional[str]) -> str:
    """非英文界面语言时追加的输出语言约束；未知语言代码按英文处理。"""

    if not language or language == "en":
        return ""
    name = LANGUAGE_NAMES.get(language, "English")
    return f"\n\nIMPORTANT: You must respond entirely in {name}. Do not use any other language."


def _excerpt(text: Optional[str], limit: int, fallback: str) -> str:
    return text[:limit] if text else fallback


def optimize_resume_prompts(jd: str, resume: str, company: Optional[str] = None, language: Optional[str] = None) -> Tuple[str, str]:
    system = load_prompt("optimize_resume_system") + language_instruction(language)
    user = load_prompt("optimize_resume_user").format(company=company or "未提供", jd=jd, resume=resume)
    return system, user


def interview_questions_prompts(jd: str, resume: Optional[str] = None, company: Optional[str] = None) -> Tuple[str, str]:
    system = load_prompt("interview_questions_system")
    user = load_prompt("interview_questions_user").format(
        company=company or "未提供",
        jd=jd,
        resume=resume or "未提供简历，请基于JD生成通用面试题",
    )
    return system, user


def mock_interview_system_prompt(
    jd: Optional[str] = None,
    resume: Optional[str] = None,
    company: Optional[str] = None,
    language: Optional[str] = None,
) -> str:
    return load_prompt("mock_interview_system").format(
        company=company or "某科技公司",
        jd=_excerpt(jd, 800, "未提供"),
        resume=_excerpt(resume, 800, "未提供"),
    ) + language_instruction(language)


def chat_system_prompt(
    jd: Optional[str] = None,
    resume: Optional[str] = None,
    company: Optional[str] = None,
    language: Optional[str] = None,
) -> str:
    return load_prompt("chat_system").format(
        company=company or "未填写",
        jd=_excerpt(jd, 600, "未填写"),
        resume=_excerpt(resume, 600, "未填写"),
    ) + language_instruction(language)


def job_intel_prompts(
    company: str,
    jd: Optional[str] = None,
    search_context: str = "",
    language: Optional[str] = None,
) -> Tuple[str, str]:
    system = load_prompt("job_intel_system") + language_instruction(language)
    user = load_prompt("job_intel_user").format(
        company=company,
        jd=_excerpt(jd, 500, "未提供"),
        search_context=search_context[:JOB_INTEL_CONTEXT_LIMIT],
    )
    return system, user
