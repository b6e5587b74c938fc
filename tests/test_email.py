import pytest

from boltstax_portal.errors import ConfigurationMissing, EmailDeliveryError, ValidationError
from boltstax_portal.models import EmailLog, EMAIL_TEMPLATES
from boltstax_portal.services.email_service import EmailService

DATA = {
    'contactName': 'Rui',
    'supplierName': 'Green Valley',
    'sheetName': 'Oats',
    'dueDate': '01/12/2026',
    'accessUrl': 'https://portal.boltstax.test/sheets/1?token=abc',
}


def test_send_renders_template_and_logs(app, sent_emails):
    provider_id = EmailService.send_email('rui@greenvalley.test', 'SHEET_CREATED', DATA, company_id='c1')

    assert provider_id == 'email_1'
    email = sent_emails[0]
    assert email['from'] == 'BoltStax <noreply@boltstax.test>'
    assert email['subject'] == 'New Product Sheet Questionnaire'
    assert 'Oats' in email['html']
    assert DATA['accessUrl'] in email['html']

    log = EmailLog.query.one()
    assert log.status == 'sent'
    assert log.template == 'SHEET_CREATED'
    assert log.provider_message_id == 'email_1'


def test_missing_configuration(app, sent_emails):
    app.config['RESEND_API_KEY'] = None
    with pytest.raises(ConfigurationMissing):
        EmailService.send_email('rui@greenvalley.test', EMAIL_TEMPLATES.sheet_created, DATA)
    assert sent_emails == []


@pytest.mark.parametrize('to, template, data', [
    ('', 'SHEET_CREATED', DATA),
    ('rui@greenvalley.test', 'NOT_A_TEMPLATE', DATA),
    ('not-an-address', 'SHEET_CREATED', DATA),
    ('rui@greenvalley.test', 'SHEET_CREATED', None),
])
def test_invalid_requests(app, sent_emails, to, template, data):
    with pytest.raises(ValidationError):
        EmailService.send_email(to, template, data)
    assert sent_emails == []


def test_provider_failure_is_logged(app, failing_email):
    with pytest.raises(EmailDeliveryError):
        EmailService.send_email('rui@greenvalley.test', EMAIL_TEMPLATES.sheet_reminder, DATA)

    log = EmailLog.query.one()
    assert log.status == 'failed'
    assert 'provider unavailable' in log.error_message
