import hashlib
import hmac
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import requests
from django.test import SimpleTestCase

from common.exceptions import CarrierUnavailableError
from integrations.shiprocket import ShiprocketAPI, normalize_phone, package_weight, verify_webhook_token

CONFIG = {
    'base_url': 'https://carrier.test/v1/external',
    'email': 'ops@example.com',
    'password': 'secret',
    'timeout': 5,
    'warehouse': {'address': 'Rajpura', 'city': 'Rajpura', 'state': 'Punjab', 'pincode': '140401', 'email': 'w@example.com'},
}


def response(status_code=200, payload=None):
    res = MagicMock()
    res.status_code = status_code
    res.json.return_value = payload if payload is not None else {}
    res.text = str(payload)
    return res


def return_request_stub(address=None):
    items = [SimpleNamespace(name='Gold ring', product_id='ring-01', quantity=2, unit_price=Decimal('2500.00'))]
    return SimpleNamespace(
        return_number='RET20261019000001',
        created_at=datetime(2026, 10, 19, 12, 0),
        pickup_address=address if address is not None else {
            'full_name': 'Asha Rao',
            'phone': '+91 98765 43210',
            'address_line1': '12 MG Road',
            'city': 'Pune',
            'state': 'Maharashtra',
            'postal_code': '411001',
        },
        items=SimpleNamespace(all=lambda: items),
        user=SimpleNamespace(email='asha@example.com'),
        original_amount=Decimal('5000.00'),
    )


class HelperTests(SimpleTestCase):
    def test_normalize_phone(self):
        self.assertEqual(normalize_phone('+91 98765 43210'), '9876543210')
        self.assertEqual(normalize_phone('09876543210'), '9876543210')
        self.assertEqual(normalize_phone('12345'), '')
        self.assertEqual(normalize_phone(None), '')

    def test_package_weight_has_floor(self):
        self.assertEqual(package_weight([SimpleNamespace(quantity=1)]), Decimal('0.3'))
        self.assertEqual(package_weight([SimpleNamespace(quantity=5)]), Decimal('0.5'))


class ShiprocketAPITests(SimpleTestCase):
    def setUp(self):
        self.api = ShiprocketAPI(CONFIG)

    def test_missing_credentials(self):
        api = ShiprocketAPI(dict(CONFIG, email=''))
        with self.assertRaises(CarrierUnavailableError):
            api.authenticate()

    @patch('integrations.shiprocket.requests.post')
    def test_authenticate_stores_token(self, mock_post):
        mock_post.return_value = response(200, {'token': 'tok-1'})
        self.api.authenticate()

        self.assertEqual(self.api.token, 'tok-1')
        self.assertIsNotNone(self.api.token_expiry)
        self.assertEqual(mock_post.call_args.kwargs['timeout'], 5)

    @patch('integrations.shiprocket.requests.post', side_effect=requests.ConnectionError('refused'))
    def test_authenticate_network_failure(self, _):
        with self.assertRaises(CarrierUnavailableError):
            self.api.authenticate()

    @patch('integrations.shiprocket.requests.request')
    @patch('integrations.shiprocket.requests.post')
    def test_create_reverse_pickup(self, mock_post, mock_request):
        mock_post.return_value = response(200, {'token': 'tok-1'})
        mock_request.side_effect = [
            response(200, {'order_id': 555, 'shipment_id': 777}),
            response(200, {
                'awb_assign_status': 1,
                'response': {'data': {'awb_code': 'AWB777', 'courier_name': 'Xpressbees'}},
            }),
        ]

        booking = self.api.create_reverse_pickup(return_request_stub())

        self.assertEqual(booking['shipment_id'], '777')
        self.assertEqual(booking['awb_code'], 'AWB777')
        self.assertEqual(booking['courier_name'], 'Xpressbees')
        create_call, assign_call = mock_request.call_args_list
        payload = create_call.kwargs['json']
        self.assertEqual(payload['pickup_phone'], '9876543210')
        self.assertEqual(payload['pickup_customer_name'], 'Asha')
        self.assertEqual(payload['shipping_pincode'], '140401')
        self.assertEqual(assign_call.kwargs['json'], {'shipment_id': 777, 'is_return': 1})

    @patch('integrations.shiprocket.requests.request')
    @patch('integrations.shiprocket.requests.post')
    def test_malformed_awb_response_becomes_carrier_unavailable(self, mock_post, mock_request):
        mock_post.return_value = response(200, {'token': 'tok-1'})
        mock_request.side_effect = [
            response(200, {'order_id': 555, 'shipment_id': 777}),
            response(200, {'awb_assign_status': 1, 'response': 'oops'}),
        ]

        with self.assertRaises(CarrierUnavailableError):
            self.api.create_reverse_pickup(return_request_stub())

    @patch('integrations.shiprocket.requests.request')
    @patch('integrations.shiprocket.requests.post')
    def test_malformed_tracking_becomes_carrier_unavailable(self, mock_post, mock_request):
        mock_post.return_value = response(200, {'token': 'tok-1'})
        for payload in (
            {'tracking_data': ['Picked Up']},
            {'tracking_data': {'shipment_track': 'Picked Up'}},
            {'tracking_data': {'shipment_track': ['Picked Up']}},
        ):
            with self.subTest(payload=payload):
                mock_request.return_value = response(200, payload)
                with self.assertRaises(CarrierUnavailableError):
                    self.api.track_by_awb('AWB1')

    def test_incomplete_address_is_rejected_before_calling(self):
        with patch('integrations.shiprocket.requests.request') as mock_request:
            with self.assertRaises(CarrierUnavailableError):
                self.api.create_reverse_pickup(return_request_stub(address={'full_name': 'Asha'}))
        mock_request.assert_not_called()

    @patch('integrations.shiprocket.requests.request')
    @patch('integrations.shiprocket.requests.post')
    def test_http_error_becomes_carrier_unavailable(self, mock_post, mock_request):
        mock_post.return_value = response(200, {'token': 'tok-1'})
        mock_request.return_value = response(503, {'message': 'down'})

        with self.assertRaises(CarrierUnavailableError):
            self.api.track_by_awb('AWB1')

    @patch('integrations.shiprocket.requests.request')
    @patch('integrations.shiprocket.requests.post')
    def test_expired_token_is_refreshed_once(self, mock_post, mock_request):
        mock_post.side_effect = [response(200, {'token': 'old'}), response(200, {'token': 'new'})]
        mock_request.side_effect = [
            response(401, {}),
            response(200, {'tracking_data': {'shipment_track': [{'current_status': 'Picked Up', 'edd': '2026-10-22'}]}}),
        ]

        tracking = self.api.track_by_awb('AWB1')

        self.assertEqual(tracking['current_status'], 'Picked Up')
        self.assertEqual(self.api.token, 'new')
        self.assertEqual(mock_request.call_args.kwargs['headers'], {'Authorization': 'Bearer new'})

    @patch('integrations.shiprocket.requests.request')
    @patch('integrations.shiprocket.requests.post')
    def test_schedule_pickup_window(self, mock_post, mock_request):
        mock_post.return_value = response(200, {'token': 'tok-1'})
        mock_request.return_value = response(200, {
            'pickup_status': 1,
            'response': {'pickup_scheduled_date': '2026-10-21 11:00:00', 'pickup_slot': '11:00 AM - 2:00 PM'},
        })

        window = self.api.schedule_pickup_window('777')

        self.assertEqual(window['date'], datetime(2026, 10, 21, 11, 0))
        self.assertEqual(window['time_slot'], '11:00 AM - 2:00 PM')


class WebhookTokenTests(SimpleTestCase):
    BODY = b'{"awb": "AWB1", "shipment_status_id": 6}'

    def test_plain_token(self):
        self.assertTrue(verify_webhook_token('hook-secret', self.BODY, 'hook-secret'))
        self.assertFalse(verify_webhook_token('wrong', self.BODY, 'hook-secret'))

    def test_body_signature(self):
        signature = hmac.new(b'hook-secret', self.BODY, hashlib.sha256).hexdigest()
        self.assertTrue(verify_webhook_token(signature, self.BODY, 'hook-secret'))
        self.assertFalse(verify_webhook_token(signature, self.BODY + b' ', 'hook-secret'))

    def test_unconfigured_secret_rejects_everything(self):
        self.assertFalse(verify_webhook_token('', self.BODY, ''))
        self.assertFalse(verify_webhook_token('anything', self.BODY, ''))
