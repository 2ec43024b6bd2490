#!/usr/bin/env python3
"""
ZenTao MCP Server - Exposes ZenTao bug queries via Model Context Protocol.

This server acts as a bridge between MCP clients and the ZenTao RESTful API,
letting AI assistants list products and bugs, read per-product bug totals and
find the bugs that belong to a given account.

Supports two transport modes:
1. STDIO: For local integration with MCP clients (direct stdin/stdout communication)
2. SSE: For remote deployment via Server-Sent Events over HTTP/HTTPS
"""

# Import FastMCP for building MCP-compliant servers with tool definitions
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

# Import Starlette for ASGI web application (used for SSE transport)
from starlette.applications import Starlette
from starlette.routing import Mount, Route
from starlette.responses import JSONResponse

# Import uvicorn for serving the ASGI app in SSE mode
import uvicorn

# Import standard libraries
import os
import sys
import json
import logging
import argparse
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Union
from dotenv import load_dotenv
from pydantic import Field

from . import __version__
from .aggregation import bug_stats, my_bugs
from .client import DEFAULT_TIMEOUT, ZentaoClient, to_int
from .errors import ValidationError, ZentaoError

# Load environment variables from .env file (ZENTAO_URL, ZENTAO_ACCOUNT, etc.)
load_dotenv()

# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

logger = logging.getLogger("zentao_mcp")
log_level = os.getenv("LOG_LEVEL", "INFO").upper()


def _dated_log_path(log_file: str) -> str:
    """zentao-mcp.log -> zentao-mcp.2024-01-27.log"""
    stamp = datetime.now().strftime("%Y-%m-%d")
    root, ext = os.path.splitext(log_file)
    if ext == ".log":
        return f"{root}.{stamp}.log"
    return f"{log_file}.{stamp}.log"


def configure_logging() -> None:
    """Attach stderr (and optional LOG_FILE) handlers to the package logger once."""
    logger.setLevel(getattr(logging, log_level, logging.INFO))
    if logger.handlers:
        return

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    # stdout carries the STDIO protocol stream
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    log_file = os.getenv("LOG_FILE")
    if log_file:
        file_handler = logging.FileHandler(_dated_log_path(log_file))
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        logger.info(f"File logging enabled: {file_handler.baseFilename}")

    # requests/urllib3 debug output would include the Token header
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


configure_logging()


# ============================================================================
# CONFIGURATION
# ============================================================================
# Connection settings come from CLI flags first, then environment variables
# (optionally loaded from .env). They are resolved once per process.

# Name reported to MCP clients in tool listings and logs
MCP_SERVER_NAME = os.getenv("MCP_SERVER_NAME", "ZenTao")


@dataclass
class Settings:
    base_url: str
    account: str
    password: str
    timeout: float = DEFAULT_TIMEOUT


def build_parser(description: str = 'ZenTao MCP Server') -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=description)

    # ZenTao connection (fall back to ZENTAO_URL / ZENTAO_ACCOUNT / ZENTAO_PASSWORD)
    parser.add_argument('--zentao-url', help='ZenTao base URL (env: ZENTAO_URL)')
    parser.add_argument('--zentao-account', help='ZenTao login account (env: ZENTAO_ACCOUNT)')
    parser.add_argument('--zentao-password', help='ZenTao password (env: ZENTAO_PASSWORD)')
    return parser


def load_settings(args: argparse.Namespace, environ=None) -> Settings:
    """
    Resolve connection settings from parsed CLI args and the environment.

    Raises:
        ValidationError: If the URL, account or password is missing
    """
    environ = os.environ if environ is None else environ

    def option(cli_value, env_name):
        return cli_value or environ.get(env_name) or None

    base_url = option(args.zentao_url, "ZENTAO_URL")
    account = option(args.zentao_account, "ZENTAO_ACCOUNT")
    password = option(args.zentao_password, "ZENTAO_PASSWORD")

    if not base_url:
        raise ValidationError("Missing ZENTAO_URL or --zentao-url")
    if not account:
        raise ValidationError("Missing ZENTAO_ACCOUNT or --zentao-account")
    if not password:
        raise ValidationError("Missing ZENTAO_PASSWORD or --zentao-password")

    timeout = to_int(environ.get("ZENTAO_TIMEOUT"), DEFAULT_TIMEOUT)
    return Settings(base_url=base_url, account=account, password=password, timeout=timeout)


# ============================================================================
# TOOL DISPATCH
# ============================================================================
# Tool arguments arrive with their public camelCase names. Each handler maps
# them onto the client/aggregation call and returns the envelope
# {status, msg, result}. Local failures propagate as ZentaoError.

def _to_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _handle_products_list(client: ZentaoClient, args: dict) -> dict:
    return client.list_products(page=args.get("page"), limit=args.get("limit"))


def _handle_bugs_list(client: ZentaoClient, args: dict) -> dict:
    return client.list_bugs(product=args.get("product"), page=args.get("page"), limit=args.get("limit"))


def _handle_bugs_stats(client: ZentaoClient, args: dict) -> dict:
    return bug_stats(client, include_zero=_to_bool(args.get("includeZero")), limit=args.get("limit"))


def _handle_bugs_mine(client: ZentaoClient, args: dict) -> dict:
    return my_bugs(
        client,
        account=args.get("account"),
        scope=args.get("scope") or "assigned",
        status=args.get("status", "active"),
        product_ids=args.get("productIds"),
        include_zero=_to_bool(args.get("includeZero")),
        per_page=args.get("perPage"),
        max_items=args.get("maxItems"),
        include_details=_to_bool(args.get("includeDetails")),
    )


TOOL_HANDLERS = {
    "zentao_products_list": _handle_products_list,
    "zentao_bugs_list": _handle_bugs_list,
    "zentao_bugs_stats": _handle_bugs_stats,
    "zentao_bugs_mine": _handle_bugs_mine,
}

TOOL_DESCRIPTIONS = {
    "zentao_products_list": "List products (RESTful API).",
    "zentao_bugs_list": "List bugs for a product (RESTful API).",
    "zentao_bugs_stats": "Aggregate bug totals across products.",
    "zentao_bugs_mine": (
        "List bugs that belong to an account (assigned to, opened by or resolved by) "
        "across all products, with per-product counts and optional bug details."
    ),
}


def dispatch(client: ZentaoClient, tool_name: str, arguments: Optional[dict] = None) -> dict:
    """
    Run a tool by name.

    Returns the tool envelope. Upstream-reported listing failures come back
    as {"status": 0, ...}; everything else that goes wrong raises ZentaoError.
    """
    handler = TOOL_HANDLERS.get(tool_name)
    if handler is None:
        raise ValidationError(f"Unknown tool: {tool_name}")
    return handler(client, arguments or {})


def run_tool(client: ZentaoClient, tool_name: str, arguments: dict) -> dict:
    """
    Dispatch for the MCP layer.

    A ZentaoError becomes a ToolError, which FastMCP reports as an
    error-flagged response carrying the message as plain text.
    """
    logger.info(f"Tool call: {tool_name}")
    try:
        return dispatch(client, tool_name, arguments)
    except ZentaoError as e:
        logger.error(f"{tool_name} failed: {type(e).__name__}: {e}")
        raise ToolError(str(e))


# ============================================================================
# MCP SERVER
# ============================================================================

def build_server(client: ZentaoClient, name: str = MCP_SERVER_NAME) -> FastMCP:
    """
    Create the FastMCP server with every tool bound to ``client``.

    The client owns the cached token, so one server instance means one
    ZenTao session for the lifetime of the process.
    """
    mcp = FastMCP(name)

    @mcp.tool(
        name = "zentao_products_list",
        description = TOOL_DESCRIPTIONS["zentao_products_list"]
    )
    def products_list(
        page: Optional[int] = Field(default=None, description="Page number (default 1)."),
        limit: Optional[int] = Field(default=None, description="Page size (default 1000).")
    ) -> dict:
        return run_tool(client, "zentao_products_list", {"page": page, "limit": limit})

    @mcp.tool(
        name = "zentao_bugs_list",
        description = TOOL_DESCRIPTIONS["zentao_bugs_list"]
    )
    def bugs_list(
        product: int = Field(description="Product ID."),
        page: Optional[int] = Field(default=None, description="Page number (default 1)."),
        limit: Optional[int] = Field(default=None, description="Page size (default 20).")
    ) -> dict:
        return run_tool(client, "zentao_bugs_list", {"product": product, "page": page, "limit": limit})

    @mcp.tool(
        name = "zentao_bugs_stats",
        description = TOOL_DESCRIPTIONS["zentao_bugs_stats"]
    )
    def bugs_stats(
        includeZero: bool = Field(default=False, description="Include products with zero bugs."),
        limit: Optional[int] = Field(default=None, description="Max products to fetch (default 1000).")
    ) -> dict:
        return run_tool(client, "zentao_bugs_stats", {"includeZero": includeZero, "limit": limit})

    @mcp.tool(
        name = "zentao_bugs_mine",
        description = TOOL_DESCRIPTIONS["zentao_bugs_mine"]
    )
    def bugs_mine(
        account: Optional[str] = Field(default=None, description="Account to match (default: the configured login)."),
        scope: str = Field(default="assigned", description="Which role to match: 'assigned', 'opened', 'resolved' or 'all'."),
        status: Union[str, List[str]] = Field(default="active", description="Bug status filter, e.g. 'active' or 'active,resolved'. Use 'all' to disable."),
        productIds: Optional[Union[str, List[Union[int, str]]]] = Field(default=None, description="Only scan these product IDs: a list or a comma-separated string (default: all products)."),
        includeZero: bool = Field(default=False, description="Include products with zero matching bugs."),
        perPage: int = Field(default=100, description="Page size used while scanning bugs (default 100)."),
        maxItems: int = Field(default=200, description="Max bug details to return (default 200)."),
        includeDetails: bool = Field(default=False, description="Return bug details in addition to counts.")
    ) -> dict:
        return run_tool(client, "zentao_bugs_mine", {
            "account": account,
            "scope": scope,
            "status": status,
            "productIds": productIds,
            "includeZero": includeZero,
            "perPage": perPage,
            "maxItems": maxItems,
            "includeDetails": includeDetails,
        })

    @mcp.resource("zentao://config/settings")
    def get_server_config() -> str:
        """Server configuration (never includes credentials)"""
        return json.dumps({
            "base_url": client.base_url,
            "account": client.account,
            "version": __version__,
            "tools": sorted(TOOL_HANDLERS),
        }, indent=2)

    @mcp.prompt()
    def my_bugs_guidance() -> str:
        """Guidance for AI assistants on choosing zentao_bugs_mine arguments."""
        return """
# Finding "my bugs" in ZenTao

Use zentao_bugs_mine to answer questions about the bugs of one person.

## scope
- "assigned" (default): bugs currently assigned to the account
- "opened": bugs the account reported
- "resolved": bugs the account resolved
- "all": any of the above

## status
- "active" (default): open bugs only
- "resolved", "closed", or several joined with commas: "active,resolved"
- "all": no status filter

## Tips
- Leave account empty to use the configured login.
- Counts cover every match; set includeDetails=true to also get bug rows,
  capped at maxItems.
- Use zentao_bugs_stats for quick per-product totals; it reads ZenTao's
  counters and is much faster than a full scan.
"""

    return mcp


# ============================================================================
# SSE TRANSPORT CONFIGURATION
# ============================================================================

def create_app(mcp: FastMCP, base_url: str) -> Starlette:
    """
    Starlette ASGI application for SSE transport.

    Routes:
    1. Health check at root (/)
    2. MCP SSE endpoint mounted at root - FastMCP handles the SSE protocol
    """
    async def health_check(request):
        """Health check endpoint for load balancers and manual testing."""
        return JSONResponse({
            "status": "ok",
            "service": "ZenTao MCP Server",
            "version": __version__,
            "base_url": base_url,
            "endpoints": {
                "health": "/",
                "sse": "/sse"
            }
        })

    return Starlette(
        routes=[
            Route("/", health_check),
            Mount("/", app=mcp.http_app(transport="sse"))
        ]
    )


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

def main(argv=None):
    """
    Run the MCP server with either STDIO or SSE transport.

    Transport Modes:
    1. STDIO (default): MCP client spawns this as a subprocess
    2. SSE: Server-Sent Events over HTTP, served by uvicorn
    """
    parser = build_parser()

    # Transport mode selection: stdio or sse
    parser.add_argument('--transport', choices=['stdio', 'sse'], default='stdio',
                        help='Transport type: stdio (local dev) or sse (production)')

    # SSE-specific arguments (ignored in stdio mode)
    parser.add_argument('--host', default='0.0.0.0',
                        help='Host to bind to for SSE (default: 0.0.0.0)')
    parser.add_argument('--port', type=int, default=8000,
                        help='Port to bind to for SSE (default: 8000)')

    args = parser.parse_args(argv)

    try:
        settings = load_settings(args)
    except ValidationError as e:
        logger.critical(str(e))
        print(str(e), file=sys.stderr)
        sys.exit(1)

    client = ZentaoClient(settings.base_url, settings.account, settings.password,
                          timeout=settings.timeout)
    mcp = build_server(client)

    logger.info("=" * 60)
    logger.info("ZenTao MCP Server Starting")
    logger.info(f"ZenTao URL: {client.base_url}")
    logger.info(f"Account: {client.account}")
    logger.info(f"Transport Mode: {args.transport}")
    logger.info(f"Log Level: {log_level}")
    logger.info("=" * 60)

    # stdout is reserved for STDIO communication
    print(f"ZenTao MCP Server | URL: {client.base_url} | Transport: {args.transport}", file=sys.stderr)

    if args.transport == 'sse':
        logger.info(f"Starting SSE server on {args.host}:{args.port}")
        try:
            uvicorn.run(
                create_app(mcp, client.base_url),
                host=args.host,
                port=args.port,
                log_level="info"
            )
        except Exception as e:
            logger.critical(f"Failed to start SSE server: {e}", exc_info=True)
            sys.exit(1)
    else:
        logger.info("Starting STDIO server (stdin/stdout communication)")
        try:
            mcp.run(transport='stdio')
        except KeyboardInterrupt:
            logger.info("Server stopped by user (Ctrl+C)")
        except Exception as e:
            logger.critical(f"Failed to start STDIO server: {e}", exc_info=True)
            sys.exit(1)


if __name__ == "__main__":
    main()
