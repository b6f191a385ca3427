"""
Library Circulation MCP Server Package.

Tracks book inventory, runs the loan lifecycle (issue, return, lost),
computes fines and answers borrowing-eligibility questions for any number of
tenants (schools), exposed as MCP tools.

Key Components:
- models: Pydantic models returned by repositories and tools
- database: SQLAlchemy schema, sessions and the repositories
- fines: pure fine arithmetic
- config: Configuration management with pydantic-settings
- tools: MCP tools (operations with side effects)
"""

__version__ = "0.1.0"

from . import database

__all__ = [
    "__version__",
    "database",
]
