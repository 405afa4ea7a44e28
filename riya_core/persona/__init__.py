"""Riya 人设：分龄 system prompt。"""

from riya_core.persona.prompts import build_guest_prompt, build_system_prompt, riya_age_for, tier_for_age

__all__ = ["build_guest_prompt", "build_system_prompt", "riya_age_for", "tier_for_age"]
