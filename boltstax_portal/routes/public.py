from flask import Blueprint, request

from boltstax_portal.errors import InvalidStatusTransition, NotFound, ValidationError
from boltstax_portal.models import SHEET_STATUS_IN_PROGRESS
from boltstax_portal.schemas import AutosaveSchema, validate
from boltstax_portal.services.response_service import ResponseService
from boltstax_portal.services.sheet_service import SheetService
from boltstax_portal.utils import api_response

# Capability-link routes: the access token in the query string is the credential
public_bp = Blueprint('public', __name__)


def _sheet_with_token(sheet_id):
    sheet = SheetService.get_sheet(sheet_id)
    SheetService.verify_access_token(sheet, request.args.get('token'))
    return sheet


@public_bp.route('/api/public/sheets/<sheet_id>', methods=['GET'])
def view_sheet(sheet_id):
    sheet = _sheet_with_token(sheet_id)
    response = ResponseService.get_questionnaire_response(sheet.id, sheet.supplier_id)
    return api_response(data={
        'sheet': sheet.to_dict(),
        'questions': [q.to_dict() for q in SheetService.get_sheet_questions(sheet)],
        'response': response.to_dict() if response else None
    })


@public_bp.route('/api/public/sheets/<sheet_id>/open', methods=['POST'])
def open_sheet(sheet_id):
    sheet, response = SheetService.open_sheet(sheet_id, request.args.get('token'))
    return api_response(data={'sheet': sheet.to_dict(), 'response': response.to_dict()})


@public_bp.route('/api/public/sheets/<sheet_id>/autosave', methods=['POST'])
def autosave_answer(sheet_id):
    data = validate(AutosaveSchema, request.get_json(silent=True))
    sheet = _sheet_with_token(sheet_id)
    if sheet.status != SHEET_STATUS_IN_PROGRESS:
        raise InvalidStatusTransition(f"Cannot edit answers on a {sheet.status} sheet")

    response = ResponseService.get_questionnaire_response(sheet.id, sheet.supplier_id)
    if not response:
        raise NotFound("Response not found, open the sheet first")

    question = next((q for q in SheetService.get_sheet_questions(sheet) if q.id == data.question_id), None)
    if question is None:
        raise ValidationError("Question is not part of this sheet",
                              field_errors={'questionId': 'Unknown question'})

    ResponseService.update_question_response(
        response.id, question.section_id, question.id, data.value,
        data.user_id, file_urls=data.file_urls
    )
    return api_response(data={'responseId': response.id, 'scheduled': True}, status=202)


@public_bp.route('/api/public/sheets/<sheet_id>/submit', methods=['POST'])
def submit_sheet(sheet_id):
    sheet = SheetService.submit_sheet(sheet_id, request.args.get('token'), request.get_json(silent=True))
    return api_response(data=sheet.to_dict())
