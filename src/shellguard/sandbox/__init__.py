"""
Sandbox backends.
"""

from shellguard.sandbox._base import Sandbox
from shellguard.sandbox.local import LocalSandbox, build_sandbox_env

__all__ = [
    "Sandbox",
    "LocalSandbox",
    "build_sandbox_env",
]
