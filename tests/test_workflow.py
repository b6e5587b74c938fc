"""
End-to-end supplier workflow driven through the services: invite a supplier,
let it sign up with its tag questions answered, send it a product sheet,
autosave some answers and submit.
"""
from boltstax_portal.models import (
    Company, Invite, Notification, QuestionnaireResponse, SupplierAnswer,
    COMPANY_STATUS_REGISTERED, INVITE_STATUS_USED, SHEET_STATUS_COMPLETED
)
from boltstax_portal.services.company_service import CompanyService
from boltstax_portal.services.invitation_service import InvitationService
from boltstax_portal.services.question_service import QuestionService
from boltstax_portal.services.response_service import ResponseService
from boltstax_portal.services.sheet_service import SheetService


def create_test_supplier(company_id, tags):
    invite = {
        'name': 'Workflow Supplier',
        'contactName': 'Contact Workflow Supplier',
        'primaryContact': 'workflow+supplier@boltstax.test',
        'notes': 'Test supplier created for workflow testing',
        'tags': tags,
    }
    return InvitationService.invite_entity(invite, company_id, 'supplier')


def test_supplier_workflow(app, company, sent_emails, question_bank, timers):
    tags = ['compliance']

    # 1. Invite
    result = create_test_supplier(company.id, tags)
    supplier_id = result['targetCompanyId']
    assert CompanyService.get_suppliers(company.id)[0].id == supplier_id

    # 2. Signup with required tag questions answered
    questions = QuestionService.get_questions_by_tags(tags)
    answers = {q.id: f"Test answer for question {q.id}" for q in questions if q.required}
    InvitationService.redeem_invite(result['inviteCode'], {
        'email': 'workflow+supplier@boltstax.test', 'password': 'workflow-pass',
        'name': 'Contact Workflow Supplier', 'answers': answers,
    })
    assert Company.query.get(supplier_id).status == COMPANY_STATUS_REGISTERED
    assert Invite.query.get(result['inviteCode']).status == INVITE_STATUS_USED
    assert SupplierAnswer.query.filter_by(company_id=supplier_id).count() == len(answers)

    # 3. Product sheet
    sheet = SheetService.create_product_sheet(company.id, {
        'name': 'Rolled Oats', 'supplierId': supplier_id, 'selectedTags': tags,
    })
    SheetService.send_sheet(sheet.id)
    _, response = SheetService.open_sheet(sheet.id, sheet.access_token)

    # 4. Autosave a draft answer
    audit = question_bank['questions']['audit']
    for value in ['2026', '2026-01', '2026-01-15']:
        ResponseService.update_question_response(response.id, audit.section_id, audit.id, value, 'supplier-user')
    app.extensions['autosave'].flush()
    assert ResponseService.get_latest_draft(response.id).value == '2026-01-15'
    assert QuestionnaireResponse.query.get(response.id).completion_rate == 50

    # 5. Submit
    cert = question_bank['questions']['cert']
    SheetService.submit_sheet(sheet.id, sheet.access_token, {
        'answers': {cert.id: 'CERT-9', audit.id: '2026-01-15'}, 'userId': 'supplier-user',
    })
    assert SheetService.get_sheet(sheet.id).status == SHEET_STATUS_COMPLETED
    assert QuestionnaireResponse.query.get(response.id).completion_rate == 100

    # Invitation, sheet created, sheet submitted
    templates = [email['subject'] for email in sent_emails]
    assert templates == [
        'Invitation to Join BoltStax',
        'New Product Sheet Questionnaire',
        'Product Sheet Questionnaire Submitted',
    ]
    kinds = {n.type for n in Notification.query.all()}
    assert kinds == {'supplierInvited', 'supplierJoined', 'questionnaireAssigned', 'questionnaireSubmitted'}
