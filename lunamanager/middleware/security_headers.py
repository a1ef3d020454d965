"""
Security headers middleware.

The API serves JSON only, so the policy is strict: nothing may frame it,
sniff it or load it as a document with active content.

Usage:
    from lunamanager.middleware.security_headers import init_security_headers
    init_security_headers(app)
"""

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=(), payment=()",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


def init_security_headers(app):
    """Register an after_request handler that adds SECURITY_HEADERS."""

    @app.after_request
    def _add_security_headers(response):
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        response.headers.pop("Server", None)
        return response
