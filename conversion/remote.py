"""Delegation of the conversion to the remote rendering service.

The remote service renders the pages and writes the terminal status itself;
this side only has to make sure a transport failure still ends in ``error``.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import requests
from jose import JWTError

from utils.jwt import SERVICE_SCOPE, create_access_token

from .base import ConversionResult, SourceRef
from .errors import AuthError, RemoteTimeoutError, TransportError

logger = logging.getLogger("conversion.remote")

DEFAULT_TIMEOUT_SECONDS = 520.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 10.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServiceTokenProvider:
    """Short-lived bearer tokens for the rendering service, refreshed on expiry."""

    def __init__(
        self,
        secret: str,
        audience: str,
        *,
        subject: str = "docsflip-worker",
        ttl_seconds: int = 600,
        refresh_leeway_seconds: int = 60,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.secret = secret
        self.audience = audience
        self.subject = subject
        self.ttl = timedelta(seconds=ttl_seconds)
        self.leeway = timedelta(seconds=min(refresh_leeway_seconds, ttl_seconds // 2))
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: Optional[datetime] = None

    def get_token(self) -> str:
        now = self._clock()
        if self._token is not None and now + self.leeway < self._expires_at:
            return self._token
        if not self.secret:
            raise AuthError("SERVICE_TOKEN_SECRET is not configured")
        try:
            token = create_access_token(
                {"sub": self.subject, "aud": self.audience, "scope": SERVICE_SCOPE, "iat": now},
                expires_delta=self.ttl,
                secret=self.secret,
            )
        except JWTError as exc:
            raise AuthError(f"Could not sign service token: {exc}") from exc
        self._token = token
        self._expires_at = now + self.ttl
        logger.debug("service_token_refreshed", extra={"audience": self.audience})
        return token


class RemoteConversionDelegate:
    name = "remote"

    def __init__(
        self,
        base_url: str,
        credentials: ServiceTokenProvider,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ValueError("CONVERTER_BASE_URL is required for the remote strategy")
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.session = session or requests.Session()

    def convert(self, document_id: str, user_id: str, source: SourceRef) -> ConversionResult:
        token = self.credentials.get_token()
        payload = {
            "bucketName": source.bucket,
            "filePath": source.object_path,
            "documentId": document_id,
            "userId": user_id,
        }
        if source.conversion_id:
            payload["conversionId"] = source.conversion_id
        url = f"{self.base_url}/convert"
        logger.info("remote_conversion_requested", extra={"document_id": document_id, "url": url})
        try:
            response = self.session.post(
                url,
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
                timeout=(self.connect_timeout, self.timeout),
            )
        except requests.Timeout as exc:
            raise RemoteTimeoutError(f"No answer from {url} within {self.timeout:.0f}s") from exc
        except requests.RequestException as exc:
            raise TransportError(f"Request to {url} failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise AuthError(f"Rendering service rejected credentials ({response.status_code})")
        if not 200 <= response.status_code < 300:
            raise TransportError(f"Rendering service answered {response.status_code}")

        logger.info(
            "remote_conversion_acknowledged",
            extra={"document_id": document_id, "status_code": response.status_code},
        )
        return ConversionResult(delegated=True)
