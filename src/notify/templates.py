from __future__ import annotations
from datetime import datetime, timezone
from html import escape
import os

_STYLE = """
      body { font-family: -apple-system, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif; margin: 0; padding: 0; background: #f4f4f7; }
      .container { max-width: 600px; margin: 40px auto; background: #ffffff; border-radius: 12px; overflow: hidden; box-shadow: 0 4px 12px rgba(0,0,0,0.08); }
      .header { background: #4f46e5; color: white; padding: 24px; text-align: center; }
      .header h1 { margin: 0; font-size: 24px; }
      .content { padding: 32px; color: #333; line-height: 1.6; }
      .tag { background: #eef2ff; color: #4338ca; padding: 4px 10px; border-radius: 9999px; font-size: 12px; display: inline-block; margin-bottom: 16px; }
      .button { background: #3b82f6; color: white; padding: 12px 24px; text-decoration: none; border-radius: 8px; font-weight: bold; display: inline-block; margin-top: 20px; }
      .footer { background: #f9fafb; padding: 24px; text-align: center; font-size: 12px; color: #6b7280; }
"""


def absolute_link(link: str | None, base_url: str | None = None) -> str | None:
    if not link:
        return None
    if link.startswith(("http://", "https://")):
        return link
    base = (base_url if base_url is not None else os.getenv("APP_BASE_URL", "")).rstrip("/")
    return f"{base}{link}" if base else link


def render_standard_email(
    title: str,
    description: str,
    church_name: str,
    notification_type: str | None = None,
    link: str | None = None,
    base_url: str | None = None,
) -> str:
    """HTML body shared by every notification email."""
    href = absolute_link(link, base_url)
    body = escape(description).replace("\n", "<br>")
    tag = f'<div class="tag">{escape(notification_type)}</div>' if notification_type else ""
    button = f'<div><a class="button" href="{escape(href, quote=True)}" target="_blank">Open in app</a></div>' if href else ""
    year = datetime.now(timezone.utc).year
    return f"""<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <style>{_STYLE}</style>
  </head>
  <body>
    <div class="container">
      <div class="header"><h1>{escape(church_name)}</h1></div>
      <div class="content">
        {tag}
        <h2>{escape(title)}</h2>
        <p>{body}</p>
        {button}
      </div>
      <div class="footer">
        <p>This is an automatic notification from {escape(church_name)}.</p>
        <p>&copy; {year} {escape(church_name)}</p>
      </div>
    </div>
  </body>
</html>
"""
