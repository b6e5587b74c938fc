from boltstax_portal.models import Company, Notification, ProductSheet
from boltstax_portal.services.company_service import CompanyService
from tests.helpers import make_company


def test_routes_require_login(client):
    resp = client.get('/api/sheets')
    assert resp.status_code == 401
    assert resp.get_json() == {'success': False, 'data': None, 'error': 'Authentication required'}


def test_login_rejects_wrong_password(client, user):
    resp = client.post('/api/auth/login', json={'email': 'ana@acme.test', 'password': 'nope'})
    assert resp.status_code == 401
    assert resp.get_json()['success'] is False


def test_register_and_me(client):
    resp = client.post('/api/auth/register', json={
        'email': 'joe@newco.test', 'password': 'secret123', 'name': 'Joe', 'companyName': 'NewCo',
    })
    assert resp.status_code == 201
    me = client.get('/api/auth/me').get_json()['data']
    assert me['email'] == 'joe@newco.test'


def test_validation_errors_carry_field_errors(auth_client):
    resp = auth_client.post('/api/companies/me/suppliers', json={'name': 'X'})
    body = resp.get_json()
    assert resp.status_code == 400
    assert body['error'] == 'Invalid input'
    assert 'primaryContact' in body['field_errors']


def test_invite_supplier_over_http(auth_client, company, sent_emails):
    resp = auth_client.post('/api/companies/me/suppliers', json={
        'name': 'Sun Mill', 'contactName': 'Lia', 'primaryContact': 'lia@sunmill.test',
    })
    assert resp.status_code == 201
    target_id = resp.get_json()['data']['targetCompanyId']

    suppliers = auth_client.get('/api/companies/me/suppliers').get_json()['data']
    assert [s['id'] for s in suppliers] == [target_id]
    pending = auth_client.get('/api/invites').get_json()['data']
    assert pending[0]['email'] == 'lia@sunmill.test'


def test_invite_email_failure_returns_502(auth_client, company, failing_email):
    resp = auth_client.post('/api/companies/me/customers', json={
        'name': 'Sun Mill', 'contactName': 'Lia', 'primaryContact': 'lia@sunmill.test',
    })
    assert resp.status_code == 502
    assert Company.query.count() == 1


def test_link_and_unlink(auth_client, company, supplier):
    resp = auth_client.post('/api/companies/me/links', json={'companyId': supplier.id, 'role': 'supplier'})
    assert resp.status_code == 200
    assert Company.query.get(supplier.id).customers == [company.id]

    auth_client.delete('/api/companies/me/links', json={'companyId': supplier.id, 'role': 'supplier'})
    assert Company.query.get(company.id).suppliers == []


def test_search(auth_client, company):
    make_company("Bolt Logistics")
    data = auth_client.get('/api/companies/search?q=Bolt').get_json()['data']
    assert [c['name'] for c in data] == ["Bolt Logistics"]


def test_delete_company_outside_network_is_forbidden(auth_client, supplier):
    resp = auth_client.delete(f'/api/companies/{supplier.id}')
    assert resp.status_code == 403


def test_delete_supplier_in_network(auth_client, company, supplier):
    CompanyService.link_companies(company.id, supplier.id, 'supplier')
    resp = auth_client.delete(f'/api/companies/{supplier.id}')
    assert resp.status_code == 200
    assert Company.query.get(supplier.id) is None


def test_sheet_lifecycle_over_http(auth_client, client, company, supplier, sent_emails, question_bank, timers):
    resp = auth_client.post('/api/sheets', json={
        'name': 'Spelt Flour', 'supplierId': supplier.id, 'selectedTags': ['compliance'],
    })
    assert resp.status_code == 201
    sheet_id = resp.get_json()['data']['id']
    assert 'accessToken' not in resp.get_json()['data']
    token = ProductSheet.query.get(sheet_id).access_token

    assert auth_client.post(f'/api/sheets/{sheet_id}/send').get_json()['data']['status'] == 'sent'
    assert auth_client.post(f'/api/sheets/{sheet_id}/send').status_code == 409

    assert client.get(f'/api/public/sheets/{sheet_id}?token=bad').status_code == 403
    opened = client.post(f'/api/public/sheets/{sheet_id}/open?token={token}').get_json()['data']
    assert opened['sheet']['status'] == 'inProgress'

    cert = question_bank['questions']['cert']
    resp = client.post(f'/api/public/sheets/{sheet_id}/autosave?token={token}', json={
        'sectionId': cert.section_id, 'questionId': cert.id, 'value': 'C-1',
    })
    assert resp.status_code == 202
    assert len(timers) == 1

    resp = client.post(f'/api/public/sheets/{sheet_id}/autosave?token={token}', json={
        'sectionId': cert.section_id, 'questionId': 'made-up', 'value': 'x',
    })
    assert resp.status_code == 400
    assert 'questionId' in resp.get_json()['field_errors']
    assert len(timers) == 1

    resp = client.post(f'/api/public/sheets/{sheet_id}/submit?token={token}', json={
        'answers': {cert.id: 'C-1'},
    })
    assert resp.status_code == 200
    assert resp.get_json()['data']['status'] == 'completed'

    detail = auth_client.get(f'/api/sheets/{sheet_id}').get_json()['data']
    assert detail['response']['completionRate'] == 100

    assert auth_client.delete(f'/api/sheets/{sheet_id}').status_code == 200
    assert auth_client.delete(f'/api/sheets/{sheet_id}').status_code == 200
    assert auth_client.get(f'/api/sheets/{sheet_id}').status_code == 404


def test_templates_over_http(auth_client):
    resp = auth_client.post('/api/templates', json={
        'title': 'Packaging', 'sections': [{'title': 'Materials', 'questions': [{'text': 'Recyclable?'}]}],
    })
    template = resp.get_json()['data']
    assert template['version'] == 1

    auth_client.patch(f"/api/templates/{template['id']}", json={'title': 'Packaging v2'})
    version = auth_client.get(f"/api/templates/{template['id']}/versions/1").get_json()['data']
    assert version['sections'][0]['title'] == 'Materials'
    assert auth_client.get(f"/api/templates/{template['id']}/versions/9").status_code == 404

    section_id = template['sections'][0]['id']
    resp = auth_client.post(f"/api/templates/{template['id']}/sections/{section_id}/questions",
                            json={'text': 'Weight', 'type': 'number'})
    assert resp.status_code == 201
    assert auth_client.get(f"/api/templates/{template['id']}").get_json()['data']['version'] == 3


def test_tags_and_questions_over_http(auth_client, question_bank):
    tags = auth_client.get('/api/tags').get_json()['data']
    assert {t['id'] for t in tags} == {'compliance', 'food-safety'}

    questions = auth_client.get('/api/questions?tags=food-safety').get_json()['data']
    assert [q['text'] for q in questions] == ['HACCP plan in place?']

    resp = auth_client.post('/api/questions', json={'text': 'Shelf life', 'type': 'number', 'tags': ['food-safety']})
    assert resp.status_code == 201


def test_notifications(auth_client, company, sent_emails):
    auth_client.post('/api/companies/me/suppliers', json={
        'name': 'Sun Mill', 'contactName': 'Lia', 'primaryContact': 'lia@sunmill.test',
    })
    body = auth_client.get('/api/notifications').get_json()
    assert body['unread_count'] == 1
    notification_id = body['data'][0]['id']

    auth_client.post(f'/api/notifications/{notification_id}/read')
    assert Notification.query.get(notification_id).read is True


def test_unknown_route_is_json(client):
    resp = client.get('/api/does-not-exist')
    assert resp.status_code == 404
    assert resp.get_json()['success'] is False
