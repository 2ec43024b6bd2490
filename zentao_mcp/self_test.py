"""
Smoke test against a live ZenTao instance.

Calls zentao_bugs_mine (assigned, active) through an in-process MCP client
and prints the count and the per-product summary. With --expected N the exit
status is 2 when the count differs; any tool failure exits with 1.
"""

import asyncio
import json
import sys

from fastmcp import Client
from fastmcp.exceptions import ToolError

from .client import ZentaoClient
from .errors import ValidationError
from .server import build_parser, build_server, load_settings


def _response_text(result):
    # Newer fastmcp returns a CallToolResult, older releases a content list
    content = getattr(result, "content", result)
    for item in content or []:
        if getattr(item, "type", None) == "text":
            return item.text
    return None


async def run_self_test(client: ZentaoClient) -> dict:
    mcp = build_server(client, name="zentao-self-test")
    async with Client(mcp) as mcp_client:
        result = await mcp_client.call_tool("zentao_bugs_mine", {
            "scope": "assigned",
            "status": "active",
            "includeDetails": False,
        })

    text = _response_text(result)
    if not text:
        raise ValueError("Missing tool response text.")
    return json.loads(text)


def main(argv=None):
    parser = build_parser(description='ZenTao MCP self-test')
    parser.add_argument('--expected', type=int, default=None,
                        help='Expected number of assigned active bugs')
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args)
    except ValidationError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)

    client = ZentaoClient(settings.base_url, settings.account, settings.password,
                          timeout=settings.timeout)
    try:
        payload = asyncio.run(run_self_test(client))
    except (ToolError, ValueError) as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)

    if payload.get("status") != 1:
        print(f"Tool error: {json.dumps(payload)}", file=sys.stderr)
        sys.exit(1)

    report = payload.get("result") or {}
    total = report.get("total", 0)
    print(f"assigned active bugs: {total}")

    products = report.get("products") or []
    if products:
        summary = ", ".join(f"{p.get('name')}({p.get('myBugs')})" for p in products)
        print(f"products: {summary}")

    if args.expected is not None and total != args.expected:
        print(f"Expected {args.expected}, got {total}.", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
