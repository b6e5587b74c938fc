from flask import Blueprint, request, current_app
from flask_login import login_required

from boltstax_portal.errors import AccessDenied
from boltstax_portal.models import RELATION_CUSTOMER, RELATION_SUPPLIER
from boltstax_portal.schemas import LinkSchema, validate
from boltstax_portal.services.company_service import CompanyService
from boltstax_portal.services.invitation_service import InvitationService
from boltstax_portal.utils import api_response, current_company_id

companies_bp = Blueprint('companies', __name__)


@companies_bp.route('/api/companies/search', methods=['GET'])
@login_required
def search_companies():
    term = request.args.get('q', '').strip()
    if not term:
        return api_response(data=[])
    companies = CompanyService.search_companies_by_name(term)
    return api_response(data=[c.to_dict() for c in companies])


@companies_bp.route('/api/companies/me', methods=['GET'])
@login_required
def my_company():
    return api_response(data=CompanyService.get_company(current_company_id()).to_dict())


@companies_bp.route('/api/companies/me', methods=['PATCH'])
@login_required
def update_my_company():
    company = CompanyService.update_company(current_company_id(), request.get_json(silent=True))
    return api_response(data=company.to_dict())


@companies_bp.route('/api/companies/me/suppliers', methods=['GET'])
@login_required
def list_suppliers():
    suppliers = CompanyService.get_suppliers(current_company_id())
    return api_response(data=[c.to_dict() for c in suppliers])


@companies_bp.route('/api/companies/me/customers', methods=['GET'])
@login_required
def list_customers():
    customers = CompanyService.get_customers(current_company_id())
    return api_response(data=[c.to_dict() for c in customers])


@companies_bp.route('/api/companies/me/suppliers', methods=['POST'])
@login_required
def invite_supplier():
    result = InvitationService.invite_entity(request.get_json(silent=True), current_company_id(), RELATION_SUPPLIER)
    current_app.logger.info("Supplier invited: %s", result['targetCompanyId'])
    return api_response(data=result, status=201)


@companies_bp.route('/api/companies/me/customers', methods=['POST'])
@login_required
def invite_customer():
    result = InvitationService.invite_entity(request.get_json(silent=True), current_company_id(), RELATION_CUSTOMER)
    current_app.logger.info("Customer invited: %s", result['targetCompanyId'])
    return api_response(data=result, status=201)


@companies_bp.route('/api/companies/me/links', methods=['POST'])
@login_required
def link_company():
    data = validate(LinkSchema, request.get_json(silent=True))
    company, partner = CompanyService.link_companies(current_company_id(), data.company_id, data.role)
    return api_response(data={'company': company.to_dict(), 'partner': partner.to_dict()})


@companies_bp.route('/api/companies/me/links', methods=['DELETE'])
@login_required
def unlink_company():
    data = validate(LinkSchema, request.get_json(silent=True))
    company, partner = CompanyService.unlink_companies(current_company_id(), data.company_id, data.role)
    return api_response(data={'company': company.to_dict(), 'partner': partner.to_dict()})


@companies_bp.route('/api/companies/<company_id>', methods=['GET'])
@login_required
def get_company(company_id):
    return api_response(data=CompanyService.get_company(company_id).to_dict())


@companies_bp.route('/api/companies/<company_id>', methods=['DELETE'])
@login_required
def delete_company(company_id):
    own_id = current_company_id()
    if company_id != own_id:
        # Only companies in our network (or ourselves) can be removed
        own = CompanyService.get_company(own_id)
        if company_id not in (own.suppliers or []) and company_id not in (own.customers or []):
            raise AccessDenied("Company is not in your network")
    CompanyService.delete_company(company_id)
    current_app.logger.info("Company %s deleted by %s", company_id, own_id)
    return api_response()


@companies_bp.route('/api/invites', methods=['GET'])
@login_required
def pending_invites():
    invites = InvitationService.list_pending_invites(current_company_id())
    return api_response(data=[i.to_dict() for i in invites])
