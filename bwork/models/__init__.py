"""
ORM models. Importing this package registers every table on Base.metadata.
"""

from bwork.models.tool import Tool
from bwork.models.sandbox import SandboxRecord

__all__ = ["Tool", "SandboxRecord"]
