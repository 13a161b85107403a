"""
Security Module for the rating pipeline.

Bot mitigation for rating submissions: reCAPTCHA verification and per-client
rate limiting.
"""

from .captcha import (
    CaptchaVerification,
    RecaptchaVerifier,
    create_recaptcha_verifier,
    resolve_recaptcha_secret,
)

from .rate_limiter import (
    RateLimiter,
    RedisRateLimiter,
    RateLimitConfig,
    RateLimitResult,
)

__all__ = [
    # CAPTCHA
    'CaptchaVerification',
    'RecaptchaVerifier',
    'create_recaptcha_verifier',
    'resolve_recaptcha_secret',

    # Rate Limiting
    'RateLimiter',
    'RedisRateLimiter',
    'RateLimitConfig',
    'RateLimitResult',
]
