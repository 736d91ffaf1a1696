# llm/__init__.py
"""Optional LLM phrasing of turn reasoning"""

from concierge.llm.reasoning import ReasoningGenerator, SYSTEM_PROMPT

__all__ = ["ReasoningGenerator", "SYSTEM_PROMPT"]
