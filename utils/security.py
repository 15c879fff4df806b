"""Security helpers for headers, identity normalisation, and auth utilities."""
import secrets

from flask import request


def apply_security_headers(response, force_https: bool = False):
    """Apply security headers suitable for a JSON API that also serves an event stream."""
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    if force_https or request.is_secure:
        response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload")
    return response


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def generate_token(length: int = 32) -> str:
    return secrets.token_urlsafe(length)


def password_meets_policy(password: str) -> tuple[bool, str | None]:
    """Enforce a sane password baseline for production."""
    if len(password) < 12:
        return False, "Password must be at least 12 characters long."
    if password.lower() == password or password.upper() == password:
        return False, "Use a mix of upper and lower case characters."
    if not any(c.isdigit() for c in password):
        return False, "Include at least one digit."
    if not any(c in "!@#$%^&*()-_=+[]{}|;:,.<>?/" for c in password):
        return False, "Include at least one symbol."
    return True, None
