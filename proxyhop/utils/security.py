import base64
import re
from urllib.parse import urlsplit, urlunsplit

# user:pass@ inside any URL embedded in free text
URL_CREDENTIALS_PATTERN = re.compile(r"(?P<scheme>[a-z][a-z0-9+.-]*://)[^/@\s:]+(?::[^/@\s]*)?@", re.I)
AUTH_VALUE_PATTERN = re.compile(
    r"(?P<name>(?:proxy-)?authorization['\"]?\s*[:=]\s*['\"]?)(?P<scheme>basic|bearer|digest|oauth)?\s*[^\s'\",}]+",
    re.I,
)


def strip_credentials(url: str) -> str:
    """Remove any userinfo part from a URL."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return URL_CREDENTIALS_PATTERN.sub(r"\g<scheme>", url)
    if not parts.netloc or "@" not in parts.netloc:
        return url
    netloc = parts.netloc.rsplit("@", 1)[1]
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def strip_query(url: str) -> str:
    """Remove credentials, query and fragment from a URL so it is safe to report."""
    url = strip_credentials(url)
    try:
        parts = urlsplit(url)
    except ValueError:
        return url.split("?", 1)[0]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def mask_secrets(text: str) -> str:
    """Mask URL credentials and Authorization values in a log line."""
    text = URL_CREDENTIALS_PATTERN.sub(r"\g<scheme>***@", text)

    def _mask(match: re.Match) -> str:
        scheme = match.group("scheme")
        return f"{match.group('name')}{scheme + ' ' if scheme else ''}***"

    return AUTH_VALUE_PATTERN.sub(_mask, text)


def basic_auth_header(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"
