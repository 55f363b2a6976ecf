"""Minimal HTML pages for browser-facing endpoints."""

from __future__ import annotations

import html

from starlette.responses import HTMLResponse

from globalping_mcp.exceptions import GatewayError

PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{title}</title>
</head>
<body>
<h1>{title}</h1>
{body}
</body>
</html>
"""


def render_page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    """Render a page. `body` must already be escaped HTML."""
    return HTMLResponse(
        PAGE_TEMPLATE.format(title=html.escape(title), body=body),
        status_code=status_code,
    )


def error_page(error: GatewayError) -> HTMLResponse:
    """Render a gateway error. Only the error's user message is shown."""
    return render_page(
        "Authentication error",
        f"<p>{html.escape(error.user_message)}</p>",
        status_code=error.status_code,
    )


def internal_error_page() -> HTMLResponse:
    return render_page(
        "Authentication error",
        "<p>An unexpected error occurred. Please try again.</p>",
        status_code=500,
    )


def home_page() -> HTMLResponse:
    return render_page(
        "Globalping MCP Server",
        "<p>This server exposes the Globalping API to MCP clients. "
        "Connect your client to <code>/mcp</code> and sign in with your "
        "Globalping account when asked.</p>",
    )
