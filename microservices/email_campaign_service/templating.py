"""
Merge Templating

One substitution function shared by subject, HTML and text bodies, plus
open/click tracking instrumentation for rendered HTML.
"""

import re
from typing import Mapping, Optional
from urllib.parse import quote

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")
BODY_CLOSE_PATTERN = re.compile(r"</body\s*>", re.IGNORECASE)
HREF_PATTERN = re.compile(r"""href=(["'])(https?://[^"']+)\1""", re.IGNORECASE)

OPEN_TRACK_PATH = "/api/email/track/open"
CLICK_TRACK_PATH = "/api/email/track/click"


def render_template(template: Optional[str], variables: Mapping[str, str]) -> Optional[str]:
    """
    Substitute {{key}} placeholders.

    Placeholders with no matching variable are left verbatim.
    """
    if not template:
        return template

    def replace_var(match):
        key = match.group(1)
        if key in variables and variables[key] is not None:
            return str(variables[key])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(replace_var, template)


def build_unsubscribe_url(frontend_url: str, email: str) -> str:
    return f"{frontend_url.rstrip('/')}/unsubscribe?email={quote(email, safe='')}"


def build_open_tracking_url(api_url: str, campaign_id: str, email: str) -> str:
    return f"{api_url.rstrip('/')}{OPEN_TRACK_PATH}/{campaign_id}/{quote(email, safe='')}"


def build_click_tracking_url(api_url: str, campaign_id: str, email: str, target_url: str) -> str:
    return (
        f"{api_url.rstrip('/')}{CLICK_TRACK_PATH}/{campaign_id}/{quote(email, safe='')}"
        f"?url={quote(target_url, safe='')}"
    )


def inject_open_tracking(html: str, api_url: str, campaign_id: str, email: str) -> str:
    """Insert a 1x1 tracking pixel before </body>, or append it when there is none"""
    pixel = (
        f'<img src="{build_open_tracking_url(api_url, campaign_id, email)}" '
        f'width="1" height="1" style="display:none;" />'
    )
    match = None
    for match in BODY_CLOSE_PATTERN.finditer(html):
        pass
    if match is None:
        return html + pixel
    return html[:match.start()] + pixel + html[match.start():]


def rewrite_links_for_click_tracking(
    html: str,
    api_url: str,
    campaign_id: str,
    email: str,
    skip_prefixes: tuple = (),
) -> str:
    """Route absolute http(s) links through the click-tracking redirect"""
    tracking_prefix = f"{api_url.rstrip('/')}{CLICK_TRACK_PATH}/"

    def replace_href(match):
        quote_char, url = match.group(1), match.group(2)
        if url.startswith(tracking_prefix) or any(url.startswith(p) for p in skip_prefixes if p):
            return match.group(0)
        tracked = build_click_tracking_url(api_url, campaign_id, email, url)
        return f"href={quote_char}{tracked}{quote_char}"

    return HREF_PATTERN.sub(replace_href, html)


__all__ = [
    "render_template",
    "build_unsubscribe_url",
    "build_open_tracking_url",
    "build_click_tracking_url",
    "inject_open_tracking",
    "rewrite_links_for_click_tracking",
]
