"""
Framework integrations for shellguard.

Each submodule requires its framework to be installed::

    from shellguard.integrations.langchain import create_langchain_tools
    from shellguard.integrations.pydantic_ai import create_shell_tool
"""

from shellguard.integrations._format import format_outcome, format_rollback

__all__ = ["format_outcome", "format_rollback"]
