import pytest
from werkzeug.security import generate_password_hash

from boltstax_portal.app import create_app
from boltstax_portal.models import (
    db, Question, QuestionnaireSection, Tag, User, ROLE_ADMIN
)
from tests.helpers import TEST_CONFIG, make_company


class FakeTimer:
    """Stands in for threading.Timer; tests fire it by hand."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function(*self.args, **self.kwargs)


@pytest.fixture
def app():
    app = create_app(TEST_CONFIG)
    with app.app_context():
        yield app
        app.extensions['autosave'].cancel_all()
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def timers(app, monkeypatch):
    created = []

    def factory(interval, function, args=None, kwargs=None):
        timer = FakeTimer(interval, function, args=args, kwargs=kwargs)
        created.append(timer)
        return timer

    monkeypatch.setattr(app.extensions['autosave'], 'timer_factory', factory)
    return created


@pytest.fixture
def sent_emails(monkeypatch):
    sent = []

    def fake_send(params):
        sent.append(params)
        return {'id': f"email_{len(sent)}"}

    monkeypatch.setattr('resend.Emails.send', fake_send)
    return sent


@pytest.fixture
def failing_email(monkeypatch):
    def fake_send(params):
        raise RuntimeError("provider unavailable")

    monkeypatch.setattr('resend.Emails.send', fake_send)


@pytest.fixture
def company(app):
    return make_company("Acme Foods")


@pytest.fixture
def supplier(app):
    return make_company("Bolt Packaging")


@pytest.fixture
def user(company):
    user = User(
        name="Ana Buyer",
        email="ana@acme.test",
        password_hash=generate_password_hash("secret123"),
        role=ROLE_ADMIN,
        company_id=company.id
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def auth_client(client, user):
    resp = client.post('/api/auth/login', json={'email': 'ana@acme.test', 'password': 'secret123'})
    assert resp.status_code == 200
    return client


@pytest.fixture
def question_bank(app):
    """Two bank sections; 'compliance' and 'food-safety' tagged questions."""
    compliance = Tag(id='compliance', name='Compliance')
    food = Tag(id='food-safety', name='Food Safety', color='#FF0000')
    db.session.add_all([compliance, food])

    general = QuestionnaireSection(title='General', order=0)
    safety = QuestionnaireSection(title='Safety', order=1)
    db.session.add_all([general, safety])
    db.session.flush()

    q_cert = Question(section_id=general.id, text='Certification number', type='shortText',
                      required=True, order=0, tags=[compliance])
    q_audit = Question(section_id=general.id, text='Last audit date', type='date',
                       required=False, order=1, tags=[compliance])
    q_haccp = Question(section_id=safety.id, text='HACCP plan in place?', type='boolean',
                       required=True, order=0, tags=[food])
    db.session.add_all([q_cert, q_audit, q_haccp])
    db.session.commit()
    return {
        'tags': {'compliance': compliance, 'food-safety': food},
        'sections': {'general': general, 'safety': safety},
        'questions': {'cert': q_cert, 'audit': q_audit, 'haccp': q_haccp},
    }
