"""AI Sage insight generation"""

from habitquest.insights.sage import (
    SageClient,
    SageInsight,
    UserContext,
    build_prompt,
    build_user_context,
    extract_json_object,
    generate_insight,
    parse_insight,
)

__all__ = [
    "SageClient",
    "SageInsight",
    "UserContext",
    "build_prompt",
    "build_user_context",
    "extract_json_object",
    "generate_insight",
    "parse_insight",
]
