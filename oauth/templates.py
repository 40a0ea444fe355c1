"""HTML pages for the browser-facing steps of the OAuth flow.

/authorize and /google-callback are visited by a browser, so their failures
render a page instead of JSON. The stdio login flow reuses the same pages for
its local callback server.
"""

from html import escape

_PAGE = """<!DOCTYPE html>
<html>
<head>
    <title>{title} - YouTube Music MCP</title>
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
               background: #FAF9F7;
               min-height: 100vh; display: flex; align-items: center; justify-content: center; margin: 0; }}
        .container {{ background: white; padding: 40px; border-radius: 16px; box-shadow: 0 4px 24px rgba(0,0,0,0.08);
                     width: 100%; max-width: 420px; border: 1px solid #E5E4E0; text-align: center; }}
        h1 {{ margin: 0 0 12px; color: #1A1915; font-size: 22px; font-weight: 600; }}
        p {{ color: #6B6860; margin: 0; }}
        .error {{ background: #FEF2F2; color: #B91C1C; padding: 12px; border-radius: 8px; margin-top: 20px;
                  border: 1px solid #FECACA; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>{title}</h1>
        <p>{message}</p>
        {detail}
    </div>
</body>
</html>
"""


def error_page(title: str, description: str) -> str:
    """Render an error page. All values are escaped."""
    return _PAGE.format(
        title=escape(title),
        message="The authorization request could not be completed.",
        detail=f'<div class="error">{escape(description)}</div>',
    )


def success_page(title: str, message: str) -> str:
    return _PAGE.format(title=escape(title), message=escape(message), detail="")
