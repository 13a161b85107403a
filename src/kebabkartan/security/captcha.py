"""
reCAPTCHA verification.

Tokens are checked against Google's siteverify endpoint. v3 keys return a
score between 0 and 1 which must reach the configured minimum; v2 keys return
no score and are accepted on ``success`` alone.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities import parameters

from kebabkartan.handlers.models.env_vars import RECAPTCHA_VERIFY_URL, RatingsEnvVars
from kebabkartan.handlers.utils.errors import ConfigurationError, ExternalServiceError
from kebabkartan.handlers.utils.observability import logger, metrics, tracer

DEFAULT_MIN_SCORE = 0.5
SECRET_CACHE_SECONDS = 300


@dataclass
class CaptchaVerification:
    """Outcome of a siteverify call."""

    success: bool
    score: Optional[float] = None
    action: Optional[str] = None
    hostname: Optional[str] = None
    error_codes: List[str] = field(default_factory=list)
    accepted: bool = False

    @classmethod
    def from_response(cls, payload: Dict[str, Any], min_score: float) -> 'CaptchaVerification':
        success = bool(payload.get('success', False))
        score = payload.get('score')
        score = float(score) if score is not None else None
        return cls(
            success=success,
            score=score,
            action=payload.get('action'),
            hostname=payload.get('hostname'),
            error_codes=list(payload.get('error-codes', [])),
            accepted=success and (score is None or score >= min_score),
        )


class RecaptchaVerifier:
    """Verifies reCAPTCHA tokens over HTTP."""

    def __init__(
        self,
        secret: str,
        min_score: float = DEFAULT_MIN_SCORE,
        verify_url: str = RECAPTCHA_VERIFY_URL,
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize the verifier.

        Args:
            secret: reCAPTCHA secret key
            min_score: Lowest v3 score that is accepted
            verify_url: siteverify endpoint
            timeout: HTTP timeout in seconds
            client: Preconfigured HTTP client, one is created when omitted
        """
        if not secret:
            raise ConfigurationError("reCAPTCHA secret key is empty")

        self._secret = secret
        self.min_score = min_score
        self.verify_url = verify_url
        self._client = client or httpx.Client(timeout=timeout)

    @tracer.capture_method
    def verify(self, token: str, remote_ip: Optional[str] = None) -> CaptchaVerification:
        """
        Verify a token.

        Args:
            token: Token produced by the client widget
            remote_ip: Address the token was submitted from

        Returns:
            Verification details; ``accepted`` tells whether the rating may proceed

        Raises:
            ExternalServiceError: If the endpoint cannot be reached or answers with an error status
        """
        form = {'secret': self._secret, 'response': token}
        if remote_ip:
            form['remoteip'] = remote_ip

        try:
            response = self._client.post(self.verify_url, data=form)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            metrics.add_metric(name="CaptchaVerificationError", unit=MetricUnit.Count, value=1)
            raise ExternalServiceError(
                f"reCAPTCHA verification returned HTTP {e.response.status_code}",
                service_name="reCAPTCHA",
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            metrics.add_metric(name="CaptchaVerificationError", unit=MetricUnit.Count, value=1)
            raise ExternalServiceError(
                f"reCAPTCHA verification failed: {str(e)}",
                service_name="reCAPTCHA",
            ) from e

        result = CaptchaVerification.from_response(payload, self.min_score)

        if result.accepted:
            metrics.add_metric(name="CaptchaAccepted", unit=MetricUnit.Count, value=1)
        else:
            metrics.add_metric(name="CaptchaRejected", unit=MetricUnit.Count, value=1)
            logger.warning("Failed reCAPTCHA verification", extra={
                "success": result.success,
                "score": result.score,
                "error_codes": result.error_codes,
                "remote_ip": remote_ip,
            })

        return result

    def close(self) -> None:
        self._client.close()


def resolve_recaptcha_secret(env: RatingsEnvVars) -> str:
    """
    Find the reCAPTCHA secret.

    An inline ``RECAPTCHA_SECRET_KEY`` wins; otherwise the secret named by
    ``RECAPTCHA_SECRET_NAME`` is read from Secrets Manager and cached.

    Raises:
        ConfigurationError: If neither is configured
    """
    if env.RECAPTCHA_SECRET_KEY:
        return env.RECAPTCHA_SECRET_KEY

    if env.RECAPTCHA_SECRET_NAME:
        return parameters.get_secret(env.RECAPTCHA_SECRET_NAME, max_age=SECRET_CACHE_SECONDS)

    raise ConfigurationError("Set RECAPTCHA_SECRET_KEY or RECAPTCHA_SECRET_NAME")


def create_recaptcha_verifier(env: RatingsEnvVars) -> RecaptchaVerifier:
    return RecaptchaVerifier(
        secret=resolve_recaptcha_secret(env),
        min_score=env.RECAPTCHA_MIN_SCORE,
        verify_url=env.RECAPTCHA_VERIFY_URL,
        timeout=env.RECAPTCHA_TIMEOUT_SECONDS,
    )
