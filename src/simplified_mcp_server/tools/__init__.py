"""Static tools registered at server start."""

from typing import List

from ..models import ToolDefinition
from .social_media import create_social_media_post_tool, get_social_media_accounts_tool
from .workflow_status import create_workflow_status_tool


def get_static_tools() -> List[ToolDefinition]:
    return [
        get_social_media_accounts_tool(),
        create_social_media_post_tool(),
        create_workflow_status_tool(),
    ]


__all__ = [
    "get_static_tools",
    "get_social_media_accounts_tool",
    "create_social_media_post_tool",
    "create_workflow_status_tool",
]
