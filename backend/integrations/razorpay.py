"""
Razorpay refunds client.

Only the refund endpoint is used: the storefront takes payments elsewhere,
returns only need to send money back for an existing gateway payment.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import requests

from common.exceptions import PaymentGatewayError
from common.utils import to_paise

logger = logging.getLogger(__name__)


class RazorpayAPI:
    def __init__(self, config: Dict[str, Any]):
        self.base_url = (config.get('base_url') or '').rstrip('/')
        self.key_id = config.get('key_id')
        self.key_secret = config.get('key_secret')
        self.timeout = config.get('timeout', 15)

    @classmethod
    def from_settings(cls):
        from django.conf import settings
        return cls({
            'base_url': getattr(settings, 'RAZORPAY_BASE_URL', 'https://api.razorpay.com/v1'),
            'key_id': getattr(settings, 'RAZORPAY_KEY_ID', ''),
            'key_secret': getattr(settings, 'RAZORPAY_KEY_SECRET', ''),
            'timeout': getattr(settings, 'RAZORPAY_TIMEOUT_SECONDS', 15),
        })

    def refund(self, payment_id: str, amount: Decimal, notes: Optional[Dict[str, str]] = None,
               receipt: str = '') -> Dict[str, Any]:
        """
        Refund ``amount`` rupees of a captured payment.

        Args:
            payment_id: Razorpay payment id (``pay_...``)
            amount: Amount in rupees; sent to the gateway in paise
            notes: Key/value notes stored on the refund
            receipt: Merchant reference, the return number

        Returns:
            dict: {id, amount, status}

        Raises:
            PaymentGatewayError
        """
        if not self.key_id or not self.key_secret:
            raise PaymentGatewayError(detail='Razorpay credentials are not configured')
        if not payment_id:
            raise PaymentGatewayError(detail='No gateway payment id to refund')

        body: Dict[str, Any] = {'amount': to_paise(amount), 'notes': notes or {}}
        if receipt:
            body['receipt'] = receipt

        try:
            res = requests.post(
                f'{self.base_url}/payments/{payment_id}/refund',
                json=body,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f'razorpay refund request failed for {payment_id}: {e}')
            raise PaymentGatewayError(detail=f'Refund request failed: {e}')

        try:
            data = res.json()
        except ValueError:
            data = {}

        if res.status_code != 200:
            description = ((data.get('error') or {}).get('description')) if isinstance(data, dict) else None
            logger.error(f'razorpay refund failed for {payment_id}: {res.status_code} {res.text[:300]}')
            raise PaymentGatewayError(detail=f'Refund rejected by gateway: {description or f"HTTP {res.status_code}"}')

        if not isinstance(data, dict) or not data.get('id'):
            raise PaymentGatewayError(detail='Gateway returned no refund id')

        logger.info(f'razorpay refund {data["id"]} created for {payment_id}, amount={amount}')
        return {
            'id': data['id'],
            'amount': Decimal(data.get('amount', body['amount'])) / 100,
            'status': data.get('status', ''),
        }
