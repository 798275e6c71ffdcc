"""Security headers middleware."""

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to all responses."""

    def __init__(self, app, csp_directives: dict[str, str] | None = None):
        """Initialize middleware.

        Args:
            app: FastAPI application.
            csp_directives: Directives overriding the public-page policy.
        """
        super().__init__(app)
        self.public_csp = self._build_csp(csp_directives)

        # The menu editor runs as a same-origin script.
        admin_csp = {"script-src": "'self'", "style-src": "'self'"}
        self.admin_csp = self._build_csp(admin_csp)

    def _build_csp(self, custom: dict[str, str] | None) -> str:
        """Build Content-Security-Policy header value.

        Args:
            custom: Custom directives to override defaults.

        Returns:
            CSP header string.
        """
        defaults = {
            "default-src": "'self'",
            "script-src": "'self'",
            "style-src": "'self' 'unsafe-inline'",  # Inline styles in Markdown HTML
            "img-src": "'self' data:",
            "font-src": "'self'",
            "connect-src": "'self'",
            "frame-ancestors": "'none'",
            "base-uri": "'self'",
            "form-action": "'self'",
        }
        if custom:
            defaults.update(custom)
        return "; ".join(f"{key} {value}" if value else key for key, value in defaults.items())

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        path = request.url.path
        is_admin = "/admin/" in path or path.endswith("/admin")
        response.headers["Content-Security-Policy"] = self.admin_csp if is_admin else self.public_csp

        if request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        # Never cache admin pages
        if is_admin:
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"
            response.headers["Pragma"] = "no-cache"

        return response
