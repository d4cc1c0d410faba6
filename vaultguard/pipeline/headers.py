"""Response security headers. Applied to every response, aborted ones included."""

from typing import MutableMapping

CONTENT_SECURITY_POLICY = "; ".join(
    [
        "default-src 'self'",
        "script-src 'self'",
        "style-src 'self'",
        "img-src 'self' data:",
        "font-src 'self'",
        "connect-src 'self'",
        "frame-src 'none'",
        "object-src 'none'",
        "base-uri 'self'",
        "form-action 'self'",
        "frame-ancestors 'none'",
    ]
)

PERMISSIONS_POLICY = ", ".join(
    [
        "camera=()",
        "microphone=()",
        "geolocation=()",
        "payment=()",
    ]
)

SECURITY_HEADERS = {
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": PERMISSIONS_POLICY,
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
}

# Administrative pages must never be cached.
ADMIN_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
}

SERVER_IDENTIFYING_HEADERS = frozenset({"server", "x-powered-by"})


def is_admin_path(path: str, admin_prefix: str) -> bool:
    prefix = admin_prefix.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


def apply_security_headers(
    headers: MutableMapping[str, str], path: str, admin_prefix: str = "/admin"
) -> None:
    """Set the fixed security headers in place and strip server-identifying ones."""
    for name in [n for n in headers.keys() if n.lower() in SERVER_IDENTIFYING_HEADERS]:
        del headers[name]
    for name, value in SECURITY_HEADERS.items():
        headers[name] = value
    if is_admin_path(path, admin_prefix):
        for name, value in ADMIN_CACHE_HEADERS.items():
            headers[name] = value
