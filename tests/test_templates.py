import pytest

from boltstax_portal.errors import NotFound, ValidationError
from boltstax_portal.models import Company, ProductSheet, Tag, db
from boltstax_portal.services.question_service import QuestionService, is_answered
from boltstax_portal.services.sheet_service import SheetService
from boltstax_portal.services.template_service import TemplateService
from tests.helpers import make_company

TEMPLATE = {
    'title': 'Supplier Onboarding',
    'description': 'Basic checks',
    'tags': ['compliance'],
    'sections': [
        {'title': 'Company', 'questions': [
            {'text': 'Legal name', 'required': True},
            {'text': 'Employees', 'type': 'number'},
        ]},
        {'title': 'Quality', 'questions': [
            {'text': 'Certifications', 'type': 'multiChoice',
             'options': [{'text': 'ISO 9001', 'value': 'iso9001'}, {'text': 'BRC', 'value': 'brc'}]},
        ]},
    ],
}


def test_create_template(app):
    template = TemplateService.create_template(TEMPLATE, created_by='user-1')

    assert template.version == 1
    assert template.is_archived is False
    assert [s.title for s in template.sections] == ['Company', 'Quality']
    assert [q.text for q in template.sections[0].questions] == ['Legal name', 'Employees']
    assert template.sections[1].questions[0].options[1]['value'] == 'brc'


def test_create_template_rejects_bad_question_type(app):
    bad = {'title': 'Broken', 'sections': [{'title': 'S', 'questions': [{'text': 'Q', 'type': 'essay'}]}]}
    with pytest.raises(ValidationError):
        TemplateService.create_template(bad)


def test_update_snapshots_previous_sections(app):
    template = TemplateService.create_template(TEMPLATE)

    TemplateService.update_template(template.id, {
        'title': 'Supplier Onboarding v2',
        'sections': [{'title': 'Only section', 'questions': [{'text': 'Anything else?'}]}],
    }, change_description='Collapsed sections', updated_by='user-2')

    updated = TemplateService.get_template(template.id)
    assert updated.version == 2
    assert updated.title == 'Supplier Onboarding v2'
    assert [s.title for s in updated.sections] == ['Only section']

    snapshot = TemplateService.get_template_version(template.id, 1)
    assert snapshot.changes == ['Collapsed sections']
    assert snapshot.updated_by == 'user-2'
    assert [s['title'] for s in snapshot.sections] == ['Company', 'Quality']
    assert TemplateService.get_template_version(template.id, 2) is None


def test_versions_increase_by_one(app):
    template = TemplateService.create_template(TEMPLATE)
    for i in range(3):
        TemplateService.update_template(template.id, {'description': f'rev {i}'})

    assert TemplateService.get_template(template.id).version == 4
    assert [v.version for v in TemplateService.get_template_versions(template.id)] == [3, 2, 1]


def test_archive_hides_template(app):
    keep = TemplateService.create_template(TEMPLATE)
    gone = TemplateService.create_template({**TEMPLATE, 'title': 'Another'})
    TemplateService.archive_template(gone.id)

    assert [t.id for t in TemplateService.get_templates()] == [keep.id]
    assert len(TemplateService.get_templates(include_archived=True)) == 2


def test_templates_by_tags(app):
    TemplateService.create_template(TEMPLATE)
    TemplateService.create_template({**TEMPLATE, 'title': 'Dairy', 'tags': ['dairy']})

    assert [t.title for t in TemplateService.get_templates_by_tags(['dairy'])] == ['Dairy']
    assert TemplateService.get_templates_by_tags(['unknown']) == []


def test_add_question_to_section_bumps_version(app):
    template = TemplateService.create_template(TEMPLATE)
    section = template.sections[0]

    question = TemplateService.add_question_to_section(
        template.id, section.id, {'text': 'VAT number', 'required': True})

    template = TemplateService.get_template(template.id)
    assert template.version == 2
    assert question.order == 2
    assert [q.text for q in template.sections[0].questions][-1] == 'VAT number'
    snapshot = TemplateService.get_template_version(template.id, 1)
    assert len(snapshot.sections[0]['questions']) == 2

    with pytest.raises(NotFound):
        TemplateService.add_question_to_section(template.id, 'missing', {'text': 'x'})


def test_tag_crud(app):
    tag = QuestionService.create_tag({'name': 'Allergens'})
    assert tag.color == '#2E7D32'

    QuestionService.update_tag(tag.id, {'color': '#abc'})
    assert Tag.query.get(tag.id).color == '#abc'

    with pytest.raises(ValidationError):
        QuestionService.create_tag({'name': 'Bad', 'color': 'green'})

    QuestionService.delete_tag(tag.id)
    with pytest.raises(NotFound):
        QuestionService.get_tag(tag.id)


def test_delete_tag_strips_references(question_bank):
    company = make_company("Acme Foods", tags=['compliance', 'food-safety'])
    supplier = make_company("Bolt Packaging")
    template = TemplateService.create_template(TEMPLATE)
    sheet = SheetService.create_product_sheet(company.id, {
        'name': 'Oats', 'supplierId': supplier.id, 'selectedTags': ['compliance', 'food-safety'],
    })

    QuestionService.delete_tag('compliance')

    assert Tag.query.get('compliance') is None
    assert Company.query.get(company.id).tags == ['food-safety']
    assert ProductSheet.query.get(sheet.id).selected_tags == ['food-safety']
    assert TemplateService.get_template(template.id).tags == []
    assert question_bank['questions']['cert'].tag_ids == []


def test_bank_questions_by_tag(question_bank):
    compliance = QuestionService.get_questions_by_tags(['compliance'])
    assert [q.text for q in compliance] == ['Certification number', 'Last audit date']

    both = QuestionService.get_questions(['compliance', 'food-safety'])
    assert len(both) == 3
    assert QuestionService.get_questions_by_tags([]) == []


def test_add_bank_question_defaults_to_general_section(question_bank):
    question = QuestionService.add_question({'text': 'Country of origin', 'tags': ['compliance']})
    assert question.section.title == 'General'
    assert question.section.template_id is None

    with pytest.raises(ValidationError):
        QuestionService.add_question({'text': 'Orphan', 'tags': ['no-such-tag']})


def test_update_and_delete_question(question_bank):
    cert = question_bank['questions']['cert']
    QuestionService.update_question(cert.id, {'text': 'Certificate ID', 'tags': ['food-safety']})
    db.session.expire_all()

    assert QuestionService.get_question(cert.id).text == 'Certificate ID'
    assert QuestionService.get_question(cert.id).tag_ids == ['food-safety']

    QuestionService.delete_question(cert.id)
    with pytest.raises(NotFound):
        QuestionService.get_question(cert.id)


@pytest.mark.parametrize('value, expected', [
    (None, False), ('', False), ('  ', False), ([], False), ({}, False),
    ('yes', True), (0, True), (False, True), (['a'], True),
])
def test_is_answered(value, expected):
    assert is_answered(value) is expected
