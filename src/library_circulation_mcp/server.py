"""Library Circulation MCP Server - Core Server Implementation

Builds the FastMCP server, registers every circulation tool and runs it over
the stdio transport. Logs go to stderr so stdout carries only JSON-RPC
messages.
"""

import logging
import signal
import sys
from typing import Any

from fastmcp import FastMCP

from library_circulation_mcp.config import get_config
from library_circulation_mcp.database.session import get_db_manager
from library_circulation_mcp.observability import configure_logging, configure_observability
from library_circulation_mcp.tools import all_tools

logger = logging.getLogger(__name__)

config = get_config()

mcp = FastMCP(
    name=config.server_name,
    version=config.server_version,
    instructions=(
        "Library Circulation MCP Server - inventory, loans and fines for school "
        "libraries. Every tool takes a tenant_id. Use create_book and create_copies "
        "to stock the catalog, check_eligibility before issue_book, and return_book or "
        "mark_book_lost to close a loan. Errors start with their kind (not_found, "
        "conflict, policy_violation, validation_error, transient)."
    ),
)

for tool in all_tools:
    logger.debug("Registering tool: %s", tool["name"])
    try:
        mcp.tool(
            name=tool["name"],
            description=tool["description"],
        )(tool["handler"])
    except Exception:
        logger.exception("Failed to register tool %s", tool["name"])
        raise

logger.info("Registered %d tools", len(all_tools))


def prepare_database() -> None:
    """Create missing tables and check the connection before serving."""
    db_manager = get_db_manager()
    db_manager.init_database()
    if not db_manager.verify_connection():
        raise RuntimeError(f"Cannot connect to database at {db_manager.database_url}")


def run_stdio_server() -> None:
    """Run the MCP server using stdio transport."""
    logger.info("Starting %s v%s on stdio transport", config.server_name, config.server_version)

    def signal_handler(signum: int, _frame: Any) -> None:
        logger.info("Received signal %s, initiating shutdown...", signum)
        get_db_manager().close()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        logger.info("MCP Server ready and waiting for connections...")
        mcp.run(transport="stdio")
    except Exception:
        logger.exception("Fatal error in MCP server")
        sys.exit(1)


def main() -> None:
    """Entry point for ``library-circulation-mcp`` and ``python -m``."""
    configure_logging(config)
    configure_observability(config)

    try:
        logger.info("=" * 60)
        logger.info("Library Circulation MCP Server")
        logger.info("Version: %s", config.server_version)
        logger.info("Transport: %s", config.transport)
        logger.info("Database: %s", config.get_database_url())
        logger.info("Debug Mode: %s", config.debug)
        logger.info("=" * 60)

        prepare_database()

        if config.transport == "stdio":
            run_stdio_server()
        else:
            logger.error("Unsupported transport: %s", config.transport)
            sys.exit(1)

    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception:
        logger.exception("Failed to start MCP server")
        sys.exit(1)


if __name__ == "__main__":
    main()
