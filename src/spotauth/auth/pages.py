"""Self-contained HTML result pages served by the redirect listener.

Pages carry inline CSS only; they must render with no network access.
"""

from __future__ import annotations

import html

_STYLE = """
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Ubuntu, sans-serif;
            background: linear-gradient(135deg, %(from)s, %(to)s);
            color: white;
            margin: 0;
            display: flex;
            justify-content: center;
            align-items: center;
            height: 100vh;
            text-align: center;
        }
        .container {
            background: rgba(0, 0, 0, 0.1);
            padding: 3rem;
            border-radius: 20px;
            max-width: 500px;
            box-shadow: 0 8px 32px rgba(0, 0, 0, 0.3);
        }
        .icon { font-size: 4rem; margin-bottom: 1rem; }
        h1 { margin: 1rem 0; font-size: 2rem; font-weight: 300; }
        p { font-size: 1.1rem; line-height: 1.6; margin: 1.5rem 0; opacity: 0.9; }
        .info {
            background: rgba(255, 255, 255, 0.1);
            padding: 1rem;
            border-radius: 10px;
            border: 1px solid rgba(255, 255, 255, 0.2);
        }
        .footer { margin-top: 2rem; font-size: 0.9rem; opacity: 0.7; }
"""

_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Spotify Authorization - %(title)s</title>
    <style>%(style)s    </style>
</head>
<body>
    <div class="container">
        <div class="icon">%(icon)s</div>
        <h1>%(heading)s</h1>
        <p>%(lead)s</p>
        <div class="info"><strong>%(info)s</strong></div>
        <p>You can safely close this browser tab.</p>
        <div class="footer">spotauth</div>
    </div>
</body>
</html>
"""


def success_page() -> str:
    """Page shown after the provider redirected back with a code."""
    return _PAGE % {
        "title": "Success",
        "style": _STYLE % {"from": "#1db954", "to": "#1ed760"},
        "icon": "&#9989;",
        "heading": "Authorization Successful!",
        "lead": "Your Spotify account is now connected.",
        "info": "Returning to the application...",
    }


def error_page(error_code: str) -> str:
    """Page shown when the provider redirected back with an ``error``.

    *error_code* is attacker-controllable and is HTML-escaped.
    """
    return _PAGE % {
        "title": "Error",
        "style": _STYLE % {"from": "#dc2626", "to": "#ef4444"},
        "icon": "&#10060;",
        "heading": "Authorization Failed",
        "lead": "There was an error during the Spotify authorization process.",
        "info": f"Error: {html.escape(error_code, quote=True)}",
    }
