"""Completion client and the rewrite service built on the execution core."""

from sheets_rewrite.services.completion import CompletionClient
from sheets_rewrite.services.rewrite import RewriteResponse, RewriteService, build_prompt

__all__ = [
    "CompletionClient",
    "RewriteResponse",
    "RewriteService",
    "build_prompt",
]
