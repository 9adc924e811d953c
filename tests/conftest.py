import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from decimal import Decimal

import pytest

from vocalcast.errors import UpstreamError
from vocalcast.main import create_app
from vocalcast.models.podcast import db, Podcast, Tip, User
from vocalcast.services.email_service import EmailResult
from vocalcast.services.storage_service import StoredObject, build_object_key

ADMIN_KEY = 'test-admin-key'
WALLET = 'GABCDEFGHIJKLMNOPQRSTUVWXYZ234567'


class FakeGateway:
    """In-memory stand-in for PiNetworkClient.

    ``fail_on`` maps a phase (create/approve/complete/fetch) to the exception
    raised there. ``payments`` holds what get_payment returns.
    """

    def __init__(self):
        self.calls = []
        self.fail_on = {}
        self.payments = {}
        self.after_complete = None
        self._counter = 0

    def _maybe_fail(self, phase):
        exc = self.fail_on.get(phase)
        if exc is not None:
            raise exc

    def create_payment(self, amount, memo, metadata, uid):
        self.calls.append(('create', Decimal(amount), memo, metadata, uid))
        self._maybe_fail('create')
        self._counter += 1
        payment_id = f'pay_{self._counter}'
        self.payments[payment_id] = {'identifier': payment_id, 'status': {}}
        return payment_id

    def approve_payment(self, payment_id):
        self.calls.append(('approve', payment_id))
        self._maybe_fail('approve')
        self.payments.setdefault(payment_id, {'status': {}})['status']['developer_approved'] = True
        return {'identifier': payment_id}

    def complete_payment(self, payment_id, txid):
        self.calls.append(('complete', payment_id, txid))
        self._maybe_fail('complete')
        payment = self.payments.setdefault(payment_id, {'status': {}})
        payment['status']['developer_completed'] = True
        payment['transaction'] = {'txid': txid}
        if self.after_complete is not None:
            self.after_complete()
        return {'identifier': payment_id}

    def get_payment(self, payment_id):
        self.calls.append(('fetch', payment_id))
        self._maybe_fail('fetch')
        if payment_id not in self.payments:
            raise UpstreamError('Pi gateway fetch failed (HTTP 404)', code='GatewayError')
        return self.payments[payment_id]

    def phases(self):
        return [call[0] for call in self.calls]


class FakeStorage:
    def __init__(self, bucket='vocalcast-test', region='us-east-2'):
        self.bucket = bucket
        self.region = region
        self.uploads = []
        self.error = None

    def upload(self, body, original_name, content_type=None):
        if self.error is not None:
            raise self.error
        key = build_object_key(original_name)
        self.uploads.append((key, body, content_type))
        return StoredObject(
            key=key,
            url=f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}",
            content_type=content_type,
            size=len(body),
        )


class FakeMailer:
    def __init__(self, succeed=True):
        self.succeed = succeed
        self.sent = []

    def send_payout_request_email(self, username, wallet, amount):
        self.sent.append((username, wallet, amount))
        if self.succeed:
            return EmailResult(success=True, provider='fake', message_id='<fake@test>')
        return EmailResult(success=False, provider='fake', error='smtp down')


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def app(gateway, storage, mailer, monkeypatch):
    monkeypatch.setenv('ADMIN_API_KEY', ADMIN_KEY)
    monkeypatch.delenv('ADMIN_IP_WHITELIST', raising=False)

    app = create_app(
        config={
            'TESTING': True,
            'SECRET_KEY': 'test-secret',
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'SQLALCHEMY_ENGINE_OPTIONS': {},
            'RATELIMIT_ENABLED': False,
        },
        gateway=gateway,
        storage=storage,
        mailer=mailer,
    )

    ctx = app.app_context()
    ctx.push()
    db.create_all()

    yield app

    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers():
    return {'X-API-Key': ADMIN_KEY}


@pytest.fixture
def make_podcast(app):
    def _make(creator='alice', title='Episode', status='visible', **kwargs):
        podcast = Podcast(
            title=title,
            audio_url='https://vocalcast-test.s3.us-east-2.amazonaws.com/uploads/1-a.mp3',
            creator_pi_username=creator,
            tags=[],
            status=status,
            flag_count=kwargs.pop('flag_count', 0),
            **kwargs,
        )
        db.session.add(podcast)
        db.session.commit()
        return podcast
    return _make


@pytest.fixture
def make_tip(app):
    def _make(recipient='alice', amount='1', tipper='bob', podcast_id=None, **kwargs):
        tip = Tip(
            podcast_id=podcast_id,
            tipper_username=tipper,
            recipient_username=recipient,
            amount=Decimal(amount),
            paid=kwargs.pop('paid', False),
            **kwargs,
        )
        db.session.add(tip)
        db.session.commit()
        return tip
    return _make


@pytest.fixture
def make_wallet(app):
    def _make(username='alice', wallet=WALLET):
        user = User(username=username, wallet_address=wallet)
        db.session.add(user)
        db.session.commit()
        return user
    return _make
