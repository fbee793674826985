import hashlib
import hmac
import json
from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from common.exceptions import CarrierUnavailableError
from returns.models import ReturnRequest
from returns.tests.helpers import make_order, make_return, make_user


class CustomerReturnApiTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.order = make_order(self.user)
        self.client = APIClient()
        self.client.force_authenticate(user=self.user)

    def test_eligibility_check(self):
        resp = self.client.post('/api/v1/returns/eligibility/', {'order_id': self.order.id}, format='json')

        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.data['success'])
        self.assertTrue(resp.data['data']['is_eligible'])
        self.assertEqual(resp.data['data']['return_policy']['days'], 10)
        self.assertIsNone(resp.data['data']['existing_return_number'])

    def test_eligibility_of_unknown_order(self):
        resp = self.client.post('/api/returns/eligibility/', {'order_id': 999999}, format='json')

        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.data['error_code'], 'ORDER_NOT_FOUND')

    def test_create_and_list(self):
        resp = self.client.post('/api/v1/returns/', {
            'order_id': self.order.id,
            'reason': 'defective_product',
            'message': 'Chain clasp broken',
        }, format='json')

        self.assertEqual(resp.status_code, 201)
        data = resp.data['data']
        self.assertEqual(data['status'], 'requested')
        self.assertEqual(data['valid_next_statuses'], ['pending_approval', 'approved', 'rejected', 'cancelled'])
        self.assertEqual(len(data['status_history']), 1)
        self.assertNotIn('admin_notes', data)

        listing = self.client.get('/api/v1/returns/')
        self.assertEqual(listing.status_code, 200)
        self.assertEqual(listing.data['total'], 1)
        self.assertEqual(listing.data['results'][0]['return_number'], data['return_number'])

    def test_create_for_ineligible_order(self):
        shipped = make_order(self.user, status='shipped')
        resp = self.client.post('/api/v1/returns/', {'order_id': shipped.id}, format='json')

        self.assertEqual(resp.status_code, 400)
        self.assertFalse(resp.data['success'])
        self.assertEqual(resp.data['error_code'], 'RETURN_NOT_ELIGIBLE')
        self.assertEqual(resp.data['reasons'], ['Order must be delivered to initiate return'])

    def test_duplicate_create(self):
        make_return(self.order)
        resp = self.client.post('/api/v1/returns/', {'order_id': self.order.id}, format='json')

        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.data['error_code'], 'DUPLICATE_RETURN')

    def test_customers_only_see_their_own_returns(self):
        mine = make_return(self.order)
        theirs = make_return(make_order(make_user('stranger')))

        listing = self.client.get('/api/v1/returns/')
        self.assertEqual([r['id'] for r in listing.data['results']], [mine.id])

        resp = self.client.get(f'/api/v1/returns/{theirs.id}/')
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.data['error_code'], 'RETURN_NOT_FOUND')

    def test_cancel(self):
        return_request = make_return(self.order, status='approved')
        resp = self.client.post(f'/api/v1/returns/{return_request.id}/cancel/', {'message': 'Found a better fit'}, format='json')

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data['data']['status'], 'cancelled')

    def test_cancel_after_pickup_is_forbidden(self):
        return_request = make_return(self.order, status='picked_up')
        resp = self.client.post(f'/api/v1/returns/{return_request.id}/cancel/', {}, format='json')

        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.data['error_code'], 'TRANSITION_NOT_ALLOWED')
        self.assertEqual(resp.data['current_status'], 'picked_up')

    def test_customer_cannot_use_admin_actions(self):
        return_request = make_return(self.order)
        for action in ('transition', 'schedule_pickup', 'complete_refund', 'inspect', 'notes'):
            resp = self.client.post(f'/api/v1/returns/{return_request.id}/{action}/', {'status': 'approved'}, format='json')
            self.assertEqual(resp.status_code, 403, action)

        return_request.refresh_from_db()
        self.assertEqual(return_request.status, 'requested')

    def test_customer_cannot_create_manual_returns(self):
        resp = self.client.post('/api/v1/returns/manual/', {'order_id': self.order.id}, format='json')

        self.assertEqual(resp.status_code, 403)
        self.assertFalse(ReturnRequest.objects.exists())

    def test_message(self):
        return_request = make_return(self.order)
        resp = self.client.post(f'/api/v1/returns/{return_request.id}/messages/', {'message': 'When is pickup?'}, format='json')

        self.assertEqual(resp.status_code, 201)
        self.assertTrue(resp.data['data']['is_from_customer'])

    def test_anonymous_requests_are_rejected(self):
        resp = APIClient().get('/api/v1/returns/')
        self.assertEqual(resp.status_code, 401)


class AdminReturnApiTests(TestCase):
    def setUp(self):
        self.admin = make_user('ops', is_staff=True)
        self.order = make_order(make_user())
        self.client = APIClient()
        self.client.force_authenticate(user=self.admin)

    def test_invalid_transition_error_body(self):
        return_request = make_return(self.order, status='received')
        resp = self.client.post(f'/api/v1/returns/{return_request.id}/transition/', {'status': 'approved'}, format='json')

        self.assertEqual(resp.status_code, 409)
        self.assertFalse(resp.data['success'])
        self.assertEqual(resp.data['error_code'], 'INVALID_TRANSITION')
        self.assertEqual(resp.data['current_status'], 'received')
        self.assertEqual(resp.data['valid_next_statuses'], ['inspected'])

    def test_pickup_and_refund_targets_follow_the_transition_table(self):
        return_request = make_return(self.order)
        for target in ('pickup_scheduled', 'refund_processed'):
            with self.subTest(target=target):
                resp = self.client.post(
                    f'/api/v1/returns/{return_request.id}/transition/', {'status': target}, format='json',
                )

                self.assertEqual(resp.status_code, 409)
                self.assertEqual(resp.data['error_code'], 'INVALID_TRANSITION')
                self.assertEqual(resp.data['current_status'], 'requested')
                self.assertEqual(
                    resp.data['valid_next_statuses'], ['pending_approval', 'approved', 'rejected', 'cancelled'],
                )

        return_request.refresh_from_db()
        self.assertEqual(return_request.status, 'requested')
        self.assertEqual(return_request.awb_code, '')
        self.assertFalse(return_request.refund_succeeded)

    def test_transitions_endpoint(self):
        return_request = make_return(self.order, status='approved')
        resp = self.client.get(f'/api/v1/returns/{return_request.id}/transitions/')

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data['data']['valid_next_statuses'], ['pickup_scheduled', 'cancelled'])
        self.assertFalse(resp.data['data']['is_terminal'])

    def test_admin_sees_all_returns_with_filters(self):
        make_return(self.order, status='approved')
        make_return(make_order(make_user('b2')), status='received')

        resp = self.client.get('/api/v1/returns/', {'status': 'received'})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data['total'], 1)
        self.assertEqual(resp.data['results'][0]['status'], 'received')

    def test_schedule_pickup_with_carrier_down_returns_warning(self):
        return_request = make_return(self.order, status='approved')
        with patch('returns.pickup_service.ShiprocketAPI.create_reverse_pickup',
                   side_effect=CarrierUnavailableError(detail='HTTP 500')):
            resp = self.client.post(f'/api/v1/returns/{return_request.id}/schedule_pickup/')

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data['data']['status'], 'pickup_scheduled')
        self.assertTrue(resp.data['pickup']['manual'])
        self.assertIn('warning', resp.data)
        self.assertTrue(resp.data['data']['pickup_is_manual'])

    def test_inspect_then_complete_refund(self):
        return_request = make_return(self.order, status='received', refund_method='bank_transfer')

        resp = self.client.post(f'/api/v1/returns/{return_request.id}/inspect/', {
            'condition': 'good', 'approved': True, 'return_shipping_cost': '100.00',
        }, format='json')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data['data']['status'], 'approved_refund')
        self.assertEqual(Decimal(resp.data['data']['refund_amount']), Decimal('4900.00'))

        resp = self.client.post(f'/api/v1/returns/{return_request.id}/complete_refund/', {
            'transaction_id': 'NEFT-123',
        }, format='json')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data['data']['status'], 'refund_processed')
        self.assertFalse(resp.data['refund']['already_settled'])

        again = self.client.post(f'/api/v1/returns/{return_request.id}/complete_refund/', {}, format='json')
        self.assertEqual(again.status_code, 200)
        self.assertTrue(again.data['refund']['already_settled'])
        self.assertEqual(again.data['data']['refund_transaction_id'], 'NEFT-123')

    def test_admin_note_is_visible_to_admins(self):
        return_request = make_return(self.order)
        resp = self.client.post(f'/api/v1/returns/{return_request.id}/notes/', {'note': 'VIP customer'}, format='json')
        self.assertEqual(resp.status_code, 201)

        detail = self.client.get(f'/api/v1/returns/{return_request.id}/')
        self.assertEqual(detail.data['data']['admin_notes'][0]['note'], 'VIP customer')

    def test_support_role_is_admin(self):
        support = make_user('helpdesk', role='support')
        client = APIClient()
        client.force_authenticate(user=support)
        return_request = make_return(self.order)

        resp = client.post(f'/api/v1/returns/{return_request.id}/transition/', {'status': 'approved'}, format='json')

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(ReturnRequest.objects.get(pk=return_request.pk).status, 'approved')

    def test_manual_return_is_approved_by_default(self):
        shipped = make_order(make_user('walkin'), status='shipped', days_ago=60)
        resp = self.client.post('/api/v1/returns/manual/', {
            'order_id': shipped.id,
            'customer_id': shipped.user_id,
            'reason': 'not_as_described',
            'notes': 'Agreed over the phone',
        }, format='json')

        self.assertEqual(resp.status_code, 201)
        data = resp.data['data']
        self.assertEqual(data['status'], 'approved')
        self.assertEqual([entry['status'] for entry in data['status_history']], ['requested', 'approved'])
        self.assertEqual(data['admin_notes'][0]['note'], 'Agreed over the phone')

    def test_manual_return_without_auto_approve(self):
        resp = self.client.post('/api/v1/returns/manual/', {
            'order_id': self.order.id, 'auto_approve': False, 'pickup_required': False,
        }, format='json')

        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.data['data']['status'], 'requested')
        self.assertEqual(ReturnRequest.objects.get().pickup_status, 'not_required')

    def test_manual_return_checks_ownership_and_duplicates(self):
        other = make_user('someone-else')
        resp = self.client.post('/api/v1/returns/manual/', {
            'order_id': self.order.id, 'customer_id': other.id,
        }, format='json')
        self.assertEqual(resp.status_code, 400)

        make_return(self.order)
        resp = self.client.post('/api/v1/returns/manual/', {'order_id': self.order.id}, format='json')
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.data['error_code'], 'DUPLICATE_RETURN')


@override_settings(SHIPROCKET_WEBHOOK_SECRET='hook-secret')
class ReversePickupWebhookTests(TestCase):
    URL = '/api/v1/returns/webhooks/reverse-pickup/'

    def setUp(self):
        self.return_request = make_return(
            make_order(make_user()), status='pickup_scheduled',
            awb_code='AWB1', carrier_order_id='SR-9', pickup_status='scheduled',
        )
        self.client = APIClient()

    def push(self, payload, token='hook-secret'):
        body = json.dumps(payload)
        extra = {'HTTP_ANX_API_KEY': token} if token is not None else {}
        return self.client.post(self.URL, body, content_type='application/json', **extra)

    def test_picked_up_update_advances_return(self):
        resp = self.push({'awb': 'AWB1', 'shipment_status': 'PICKED UP', 'shipment_status_id': 42})

        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()['success'])
        self.return_request.refresh_from_db()
        self.assertEqual(self.return_request.status, 'picked_up')
        self.assertEqual(self.return_request.pickup_status, 'completed')
        self.assertEqual(self.return_request.carrier_tracking_status, 'PICKED UP')

    def test_delivered_update_walks_every_edge(self):
        resp = self.push({'sr_order_id': 'SR-9', 'current_status': 'DELIVERED', 'current_status_id': 7})

        self.assertTrue(resp.json()['success'])
        self.return_request.refresh_from_db()
        self.assertEqual(self.return_request.status, 'received')
        statuses = list(self.return_request.status_history.values_list('status', flat=True))
        self.assertEqual(statuses[-3:], ['picked_up', 'in_transit', 'received'])

    def test_repeated_update_is_harmless(self):
        self.push({'awb': 'AWB1', 'shipment_status': 'IN TRANSIT', 'shipment_status_id': 18})
        resp = self.push({'awb': 'AWB1', 'shipment_status': 'PICKED UP', 'shipment_status_id': 42})

        self.assertTrue(resp.json()['success'])
        self.return_request.refresh_from_db()
        self.assertEqual(self.return_request.status, 'in_transit')

    def test_body_signature_is_accepted(self):
        body = json.dumps({'awb': 'AWB1', 'shipment_status': 'PICKED UP', 'shipment_status_id': 6})
        signature = hmac.new(b'hook-secret', body.encode(), hashlib.sha256).hexdigest()

        resp = self.client.post(self.URL, body, content_type='application/json', HTTP_ANX_API_KEY=signature)

        self.assertTrue(resp.json()['success'])
        self.return_request.refresh_from_db()
        self.assertEqual(self.return_request.status, 'picked_up')

    def test_invalid_token_changes_nothing(self):
        for token in ('wrong', None):
            with self.subTest(token=token):
                resp = self.push({'awb': 'AWB1', 'shipment_status_id': 7}, token=token)

                self.assertEqual(resp.status_code, 200)
                self.assertFalse(resp.json()['success'])

        self.return_request.refresh_from_db()
        self.assertEqual(self.return_request.status, 'pickup_scheduled')

    def test_failed_shipment_flags_pickup(self):
        resp = self.push({'awb': 'AWB1', 'shipment_status': 'LOST', 'shipment_status_id': 12})

        self.assertTrue(resp.json()['success'])
        self.return_request.refresh_from_db()
        self.assertEqual(self.return_request.status, 'pickup_scheduled')
        self.assertEqual(self.return_request.pickup_status, 'failed')
        self.assertIn('LOST', self.return_request.admin_notes.get().note)

    def test_unknown_awb_is_reported(self):
        resp = self.push({'awb': 'NOPE', 'shipment_status_id': 6})

        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.json()['success'])
        self.return_request.refresh_from_db()
        self.assertEqual(self.return_request.status, 'pickup_scheduled')

    @override_settings(SHIPROCKET_WEBHOOK_SECRET='')
    def test_unconfigured_secret_rejects_updates(self):
        resp = self.push({'awb': 'AWB1', 'shipment_status_id': 6}, token='')

        self.assertFalse(resp.json()['success'])
