from flask import Blueprint, request
from flask_login import login_required, current_user

from boltstax_portal.errors import NotFound
from boltstax_portal.services.template_service import TemplateService
from boltstax_portal.utils import api_response

templates_bp = Blueprint('templates', __name__)


@templates_bp.route('/api/templates', methods=['GET'])
@login_required
def list_templates():
    include_archived = request.args.get('archived') in ('1', 'true')
    tags = [t for t in request.args.get('tags', '').split(',') if t]
    if tags:
        templates = TemplateService.get_templates_by_tags(tags, include_archived)
    else:
        templates = TemplateService.get_templates(include_archived)
    return api_response(data=[t.to_dict() for t in templates])


@templates_bp.route('/api/templates', methods=['POST'])
@login_required
def create_template():
    template = TemplateService.create_template(request.get_json(silent=True), created_by=current_user.id)
    return api_response(data=template.to_dict(), status=201)


@templates_bp.route('/api/templates/<template_id>', methods=['GET'])
@login_required
def get_template(template_id):
    return api_response(data=TemplateService.get_template(template_id).to_dict())


@templates_bp.route('/api/templates/<template_id>', methods=['PATCH'])
@login_required
def update_template(template_id):
    template = TemplateService.update_template(
        template_id, request.get_json(silent=True), updated_by=current_user.id
    )
    return api_response(data=template.to_dict())


@templates_bp.route('/api/templates/<template_id>/archive', methods=['POST'])
@login_required
def archive_template(template_id):
    return api_response(data=TemplateService.archive_template(template_id).to_dict())


@templates_bp.route('/api/templates/<template_id>/versions', methods=['GET'])
@login_required
def list_versions(template_id):
    TemplateService.get_template(template_id)
    versions = TemplateService.get_template_versions(template_id)
    return api_response(data=[v.to_dict() for v in versions])


@templates_bp.route('/api/templates/<template_id>/versions/<int:version>', methods=['GET'])
@login_required
def get_version(template_id, version):
    snapshot = TemplateService.get_template_version(template_id, version)
    if not snapshot:
        raise NotFound(f"Version {version} not found")
    return api_response(data=snapshot.to_dict())


@templates_bp.route('/api/templates/<template_id>/sections/<section_id>/questions', methods=['POST'])
@login_required
def add_question(template_id, section_id):
    question = TemplateService.add_question_to_section(
        template_id, section_id, request.get_json(silent=True), updated_by=current_user.id
    )
    return api_response(data=question.to_dict(), status=201)
