from flask import Blueprint, request, current_app
from flask_login import login_required

from boltstax_portal.services.response_service import ResponseService
from boltstax_portal.services.sheet_service import SheetService
from boltstax_portal.utils import api_response, current_company_id

sheets_bp = Blueprint('sheets', __name__)


def _owned_sheet(sheet_id):
    sheet = SheetService.get_sheet(sheet_id)
    SheetService.check_owner(sheet, current_company_id())
    return sheet


@sheets_bp.route('/api/sheets', methods=['GET'])
@login_required
def list_sheets():
    sheets = SheetService.get_all_sheets(current_company_id())
    return api_response(data=[s.to_dict() for s in sheets])


@sheets_bp.route('/api/sheets/assigned', methods=['GET'])
@login_required
def assigned_sheets():
    """Sheets other companies have sent to us."""
    sheets = SheetService.get_supplier_sheets(current_company_id())
    return api_response(data=[s.to_dict() for s in sheets])


@sheets_bp.route('/api/sheets', methods=['POST'])
@login_required
def create_sheet():
    sheet = SheetService.create_product_sheet(current_company_id(), request.get_json(silent=True))
    return api_response(data=sheet.to_dict(), status=201)


@sheets_bp.route('/api/sheets/<sheet_id>', methods=['GET'])
@login_required
def get_sheet(sheet_id):
    sheet = _owned_sheet(sheet_id)
    data = sheet.to_dict()
    response = ResponseService.get_questionnaire_response(sheet.id, sheet.supplier_id)
    data['response'] = response.to_dict() if response else None
    return api_response(data=data)


@sheets_bp.route('/api/sheets/<sheet_id>', methods=['PATCH'])
@login_required
def update_sheet(sheet_id):
    _owned_sheet(sheet_id)
    sheet = SheetService.update_sheet(sheet_id, request.get_json(silent=True))
    return api_response(data=sheet.to_dict())


@sheets_bp.route('/api/sheets/<sheet_id>', methods=['DELETE'])
@login_required
def delete_sheet(sheet_id):
    SheetService.delete_sheet(sheet_id, current_company_id())
    return api_response()


@sheets_bp.route('/api/sheets/<sheet_id>/send', methods=['POST'])
@login_required
def send_sheet(sheet_id):
    _owned_sheet(sheet_id)
    sheet = SheetService.send_sheet(sheet_id)
    current_app.logger.info("Sheet %s sent to supplier %s", sheet.id, sheet.supplier_id)
    return api_response(data=sheet.to_dict())


@sheets_bp.route('/api/sheets/<sheet_id>/remind', methods=['POST'])
@login_required
def remind_sheet(sheet_id):
    _owned_sheet(sheet_id)
    SheetService.send_reminder(sheet_id)
    return api_response()
