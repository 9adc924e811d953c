import logging
from typing import Any, Dict, Optional

import requests

from vocalcast.config.settings import PI_API_BASE_URL, PI_API_KEY, PI_GATEWAY_TIMEOUT
from vocalcast.errors import UpstreamError, UpstreamTimeout

logger = logging.getLogger(__name__)


class GatewayError(UpstreamError):
    """The Pi API answered a payment phase with a non-2xx status."""

    default_code = 'GatewayError'

    def __init__(self, phase: str, status: Optional[int] = None, body: str = '') -> None:
        message = f"Pi gateway {phase} failed"
        if status is not None:
            message += f" (HTTP {status})"
        super().__init__(message, phase=phase)
        self.phase = phase
        self.status = status
        self.body = body


class GatewayTimeout(UpstreamTimeout):
    default_code = 'GatewayTimeout'

    def __init__(self, phase: str) -> None:
        super().__init__(f"Pi gateway {phase} timed out", phase=phase)
        self.phase = phase


def _mask_key(value: Optional[str]) -> str:
    if not value:
        return '(none)'
    trimmed = value.strip()
    if len(trimmed) <= 6:
        return '***'
    return f"{trimmed[:3]}...{trimmed[-3:]}"


class PiNetworkClient:
    """Client for the Pi Network platform payments API.

    Each payment goes through three separate calls: create, approve and
    complete. A failed call raises and the caller must not go on to the next
    phase. The API offers no idempotency keys, so nothing here retries.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key if api_key is not None else PI_API_KEY
        self.base_url = (base_url or PI_API_BASE_URL).rstrip('/')
        self.timeout = timeout if timeout is not None else PI_GATEWAY_TIMEOUT
        self.session = session or requests.Session()
        logger.info("Pi gateway client ready base_url=%s key=%s", self.base_url, _mask_key(self.api_key))

    @property
    def headers(self) -> Dict[str, str]:
        return {
            'Authorization': f'Key {self.api_key}',
            'Content-Type': 'application/json',
        }

    def _request(self, phase: str, method: str, path: str, payload: Optional[dict] = None) -> Dict[str, Any]:
        if not self.api_key:
            raise UpstreamError('Pi gateway is not configured', code='GatewayNotConfigured')

        url = f"{self.base_url}{path}"
        logger.info("Pi gateway %s: %s %s", phase, method, path)
        try:
            response = self.session.request(
                method,
                url,
                headers=self.headers,
                json=payload,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            logger.error("Pi gateway %s timed out after %ss", phase, self.timeout)
            raise GatewayTimeout(phase)
        except requests.exceptions.RequestException as e:
            logger.error("Pi gateway %s request failed: %s", phase, e.__class__.__name__)
            raise GatewayError(phase)

        if not response.ok:
            body = (response.text or '')[:500]
            logger.warning("Pi gateway %s rejected: status=%s body=%s", phase, response.status_code, body)
            raise GatewayError(phase, response.status_code, body)

        try:
            return response.json() or {}
        except ValueError:
            return {}

    def get_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._request('fetch', 'GET', f'/payments/{payment_id}')

    def create_payment(self, amount, memo: str, metadata: Dict[str, Any], uid: str) -> str:
        """Create an app-to-user payment and return its identifier."""
        data = self._request('create', 'POST', '/payments', {
            'payment': {
                'amount': float(amount),
                'memo': memo,
                'metadata': metadata,
                'uid': uid,
            }
        })
        payment_id = data.get('identifier')
        if not payment_id:
            raise GatewayError('create', body='missing payment identifier')
        return payment_id

    def approve_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._request('approve', 'POST', f'/payments/{payment_id}/approve')

    def complete_payment(self, payment_id: str, txid: str) -> Dict[str, Any]:
        return self._request('complete', 'POST', f'/payments/{payment_id}/complete', {'txid': txid})
