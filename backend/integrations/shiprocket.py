"""
Shiprocket reverse logistics client.

Used to book return pickups from the customer's address back to the
warehouse and to read tracking for the return AWB. Every failure mode
(network error, timeout, non-2xx, API-level rejection, malformed body)
surfaces as ``CarrierUnavailableError`` so that callers can fall back to
manual pickup coordination.
"""
import hashlib
import hmac
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

import requests

from common.exceptions import CarrierUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_PICKUP_SLOT = '10:00 AM - 6:00 PM'

# Package defaults for jewellery returns
ITEM_WEIGHT_KG = Decimal('0.1')
MIN_WEIGHT_KG = Decimal('0.3')
PACKAGE_DIMENSIONS = {'length': 15, 'breadth': 10, 'height': 5}

REQUIRED_ADDRESS_FIELDS = ('full_name', 'address_line1', 'city', 'state', 'postal_code', 'phone')


def normalize_phone(phone: Optional[str]) -> str:
    """Reduce a phone number to the 10 digits Shiprocket accepts."""
    digits = ''.join(ch for ch in str(phone or '') if ch.isdigit())
    if len(digits) == 12 and digits.startswith('91'):
        digits = digits[2:]
    elif len(digits) == 11 and digits.startswith('0'):
        digits = digits[1:]
    return digits if len(digits) == 10 else ''


def package_weight(items) -> Decimal:
    total = sum((ITEM_WEIGHT_KG * item.quantity for item in items), Decimal('0'))
    return max(total, MIN_WEIGHT_KG)


def verify_webhook_token(received: Optional[str], body: bytes, secret: str) -> bool:
    """
    Check the ``anx-api-key`` header of a carrier push.

    Shiprocket sends the configured token as is; an HMAC-SHA256 hex digest
    of the raw body under the same secret is accepted as well.
    """
    if not secret or not received:
        return False
    received = received.strip().encode()
    if hmac.compare_digest(received, secret.encode()):
        return True
    digest = hmac.new(secret.encode(), body or b'', hashlib.sha256).hexdigest()
    return hmac.compare_digest(received, digest.encode())


class ShiprocketAPI:
    """
    Shiprocket external API (``/v1/external``) restricted to return shipments.

    Tokens are valid for 24 hours; the client refreshes after 23.
    """

    TOKEN_TTL = timedelta(hours=23)

    def __init__(self, config: Dict[str, Any]):
        self.base_url = (config.get('base_url') or '').rstrip('/')
        self.email = config.get('email')
        self.password = config.get('password')
        self.timeout = config.get('timeout', 10)
        self.warehouse = config.get('warehouse') or {}
        self.token: Optional[str] = None
        self.token_expiry: Optional[datetime] = None

    @classmethod
    def from_settings(cls):
        from django.conf import settings
        return cls({
            'base_url': getattr(settings, 'SHIPROCKET_BASE_URL', 'https://apiv2.shiprocket.in/v1/external'),
            'email': getattr(settings, 'SHIPROCKET_EMAIL', ''),
            'password': getattr(settings, 'SHIPROCKET_PASSWORD', ''),
            'timeout': getattr(settings, 'SHIPROCKET_TIMEOUT_SECONDS', 10),
            'warehouse': getattr(settings, 'RETURN_WAREHOUSE', {}),
        })

    def authenticate(self) -> None:
        if not self.email or not self.password:
            raise CarrierUnavailableError(detail='Shiprocket credentials are not configured')
        try:
            res = requests.post(
                f'{self.base_url}/auth/login',
                json={'email': self.email, 'password': self.password},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f'shiprocket auth request failed: {e}')
            raise CarrierUnavailableError(detail=f'Shiprocket authentication failed: {e}')

        if res.status_code != 200:
            logger.error(f'shiprocket auth failed: {res.status_code} {res.text[:200]}')
            raise CarrierUnavailableError(detail=f'Shiprocket authentication failed: HTTP {res.status_code}')

        token = self._json(res).get('token')
        if not token:
            logger.error('shiprocket auth returned no token')
            raise CarrierUnavailableError(detail='Shiprocket authentication returned no token')

        self.token = token
        self.token_expiry = datetime.now() + self.TOKEN_TTL
        logger.info('Shiprocket authentication successful')

    def _ensure_authenticated(self) -> None:
        if not self.token or not self.token_expiry or datetime.now() >= self.token_expiry:
            self.authenticate()

    @staticmethod
    def _json(res) -> Dict[str, Any]:
        try:
            data = res.json()
        except ValueError:
            raise CarrierUnavailableError(detail='Shiprocket returned a non-JSON response')
        if not isinstance(data, dict):
            raise CarrierUnavailableError(detail='Shiprocket returned an unexpected response')
        return data

    @staticmethod
    def _section(value, what: str) -> Dict[str, Any]:
        """Nested object of a response body; anything but a mapping is malformed."""
        if not value:
            return {}
        if not isinstance(value, dict):
            raise CarrierUnavailableError(detail=f'Shiprocket returned a malformed {what}')
        return value

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self._ensure_authenticated()
        url = f'{self.base_url}{path}'

        for attempt in range(2):
            try:
                res = requests.request(
                    method,
                    url,
                    json=payload,
                    headers={'Authorization': f'Bearer {self.token}'},
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                logger.error(f'shiprocket {method} {path} failed: {e}')
                raise CarrierUnavailableError(detail=f'Shiprocket request failed: {e}')

            # Expired token: log in again once
            if res.status_code == 401 and attempt == 0:
                self.token = None
                self.authenticate()
                continue

            if res.status_code not in (200, 201, 202):
                logger.error(f'shiprocket {method} {path} HTTP {res.status_code}: {res.text[:300]}')
                raise CarrierUnavailableError(
                    detail=f'Shiprocket API error: HTTP {res.status_code}'
                )
            data = self._json(res)
            logger.debug(f'shiprocket {method} {path} -> {data}')
            return data

        raise CarrierUnavailableError(detail='Shiprocket rejected the access token')

    def build_return_order_payload(self, return_request) -> Dict[str, Any]:
        """
        Map a return request to Shiprocket's create-return-order body.

        Pickup happens at the customer address snapshot; delivery at the
        configured warehouse.
        """
        address = return_request.pickup_address or {}
        missing = [key for key in REQUIRED_ADDRESS_FIELDS if not address.get(key)]
        if missing:
            raise CarrierUnavailableError(
                detail=f'Pickup address incomplete: missing {", ".join(missing)}'
            )
        phone = normalize_phone(address.get('phone'))
        if not phone:
            raise CarrierUnavailableError(detail='Pickup address has no valid 10 digit phone number')

        name_parts = address['full_name'].strip().split(' ')
        items = list(return_request.items.all())
        user_email = getattr(return_request.user, 'email', '') or self.warehouse.get('email', '')

        return {
            'order_id': return_request.return_number,
            'order_date': return_request.created_at.strftime('%Y-%m-%d'),
            'channel_id': '',
            'pickup_customer_name': name_parts[0],
            'pickup_last_name': ' '.join(name_parts[1:]),
            'pickup_address': address['address_line1'],
            'pickup_address_2': address.get('address_line2', ''),
            'pickup_city': address['city'],
            'pickup_state': address['state'],
            'pickup_country': 'India' if address.get('country', 'IN') in ('IN', 'India', '') else address['country'],
            'pickup_pincode': address['postal_code'],
            'pickup_email': user_email,
            'pickup_phone': phone,
            'shipping_customer_name': 'Returns',
            'shipping_last_name': 'Team',
            'shipping_address': self.warehouse.get('address', ''),
            'shipping_city': self.warehouse.get('city', ''),
            'shipping_state': self.warehouse.get('state', ''),
            'shipping_country': 'India',
            'shipping_pincode': self.warehouse.get('pincode', ''),
            'shipping_email': self.warehouse.get('email', ''),
            'shipping_phone': self.warehouse.get('phone', ''),
            'order_items': [
                {
                    'name': item.name,
                    'sku': f'RET-{item.product_id}',
                    'units': item.quantity,
                    'selling_price': str(item.unit_price),
                }
                for item in items
            ],
            'payment_method': 'Prepaid',
            'sub_total': str(return_request.original_amount),
            'weight': str(package_weight(items)),
            **PACKAGE_DIMENSIONS,
        }

    def create_reverse_pickup(self, return_request) -> Dict[str, Any]:
        """
        Create the return order and assign a return AWB.

        Returns:
            dict: {order_id, shipment_id, awb_code, courier_name, tracking_url}

        Raises:
            CarrierUnavailableError
        """
        payload = self.build_return_order_payload(return_request)
        created = self._request('POST', '/orders/create/return', payload)
        shipment_id = created.get('shipment_id')
        if not shipment_id:
            raise CarrierUnavailableError(
                detail=created.get('message') or 'Shiprocket did not return a shipment id'
            )

        assigned = self._request('POST', '/courier/assign/awb', {'shipment_id': shipment_id, 'is_return': 1})
        awb_data = self._section(self._section(assigned.get('response'), 'AWB response').get('data'), 'AWB data')
        awb_code = awb_data.get('awb_code')
        if assigned.get('awb_assign_status') != 1 or not awb_code:
            raise CarrierUnavailableError(
                detail=assigned.get('message') or 'Shiprocket did not assign a return AWB'
            )

        return {
            'order_id': str(created.get('order_id') or ''),
            'shipment_id': str(shipment_id),
            'awb_code': str(awb_code),
            'courier_name': awb_data.get('courier_name', ''),
            'tracking_url': f'https://shiprocket.co/tracking/{awb_code}',
        }

    def schedule_pickup_window(self, shipment_id: str) -> Dict[str, Any]:
        """
        Request a pickup for the shipment.

        Returns:
            dict: {date: datetime, time_slot: str}
        """
        data = self._request('POST', '/courier/generate/pickup', {'shipment_id': [shipment_id]})
        body = self._section(data.get('response'), 'pickup response')
        raw_date = body.get('pickup_scheduled_date')
        if data.get('pickup_status') != 1 or not raw_date:
            raise CarrierUnavailableError(
                detail=data.get('message') or 'Shiprocket did not schedule a pickup'
            )
        try:
            scheduled = datetime.strptime(str(raw_date)[:19], '%Y-%m-%d %H:%M:%S')
        except ValueError:
            try:
                scheduled = datetime.strptime(str(raw_date)[:10], '%Y-%m-%d')
            except ValueError:
                raise CarrierUnavailableError(detail=f'Unparseable pickup date: {raw_date}')
        return {
            'date': scheduled,
            'time_slot': body.get('pickup_slot') or DEFAULT_PICKUP_SLOT,
        }

    def cancel_pickup(self, awb_code: str) -> bool:
        data = self._request('POST', '/orders/cancel/shipment/awbs', {'awbs': [awb_code]})
        logger.info(f'shiprocket cancelled return pickup {awb_code}: {data.get("message", "")}')
        return True

    def track_by_awb(self, awb_code: str) -> Dict[str, Any]:
        """
        Returns:
            dict: {current_status, edd, activities}
        """
        data = self._request('GET', f'/courier/track/awb/{awb_code}')
        tracking = self._section(data.get('tracking_data'), 'tracking payload')
        shipments: List[Dict[str, Any]] = tracking.get('shipment_track') or []
        if not shipments:
            raise CarrierUnavailableError(detail=tracking.get('error') or 'No tracking data available')
        if not isinstance(shipments, list):
            raise CarrierUnavailableError(detail='Shiprocket returned a malformed shipment track')
        current = self._section(shipments[0], 'shipment track')
        activities = tracking.get('shipment_track_activities')
        return {
            'current_status': str(current.get('current_status') or ''),
            'edd': current.get('edd'),
            'activities': activities if isinstance(activities, list) else [],
        }
