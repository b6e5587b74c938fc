from flask import Blueprint, request
from flask_login import login_required

from boltstax_portal.services.question_service import QuestionService
from boltstax_portal.utils import api_response

questions_bp = Blueprint('questions', __name__)


# ---------- Tags ----------

@questions_bp.route('/api/tags', methods=['GET'])
@login_required
def list_tags():
    return api_response(data=[t.to_dict() for t in QuestionService.get_tags()])


@questions_bp.route('/api/tags', methods=['POST'])
@login_required
def create_tag():
    tag = QuestionService.create_tag(request.get_json(silent=True))
    return api_response(data=tag.to_dict(), status=201)


@questions_bp.route('/api/tags/<tag_id>', methods=['PATCH'])
@login_required
def update_tag(tag_id):
    tag = QuestionService.update_tag(tag_id, request.get_json(silent=True))
    return api_response(data=tag.to_dict())


@questions_bp.route('/api/tags/<tag_id>', methods=['DELETE'])
@login_required
def delete_tag(tag_id):
    QuestionService.delete_tag(tag_id)
    return api_response()


# ---------- Question bank ----------

@questions_bp.route('/api/questions', methods=['GET'])
@login_required
def list_questions():
    tags = [t for t in request.args.get('tags', '').split(',') if t]
    questions = QuestionService.get_questions(tags or None)
    return api_response(data=[q.to_dict() for q in questions])


@questions_bp.route('/api/questions', methods=['POST'])
@login_required
def create_question():
    question = QuestionService.add_question(request.get_json(silent=True))
    return api_response(data=question.to_dict(), status=201)


@questions_bp.route('/api/questions/<question_id>', methods=['PATCH'])
@login_required
def update_question(question_id):
    question = QuestionService.update_question(question_id, request.get_json(silent=True))
    return api_response(data=question.to_dict())


@questions_bp.route('/api/questions/<question_id>', methods=['DELETE'])
@login_required
def delete_question(question_id):
    QuestionService.delete_question(question_id)
    return api_response()


@questions_bp.route('/api/question-sections', methods=['GET'])
@login_required
def list_bank_sections():
    return api_response(data=[s.to_dict() for s in QuestionService.get_bank_sections()])


@questions_bp.route('/api/question-sections', methods=['POST'])
@login_required
def create_bank_section():
    data = request.get_json(silent=True) or {}
    section = QuestionService.create_bank_section(data.get('title'), data.get('description'), data.get('order'))
    return api_response(data=section.to_dict(), status=201)
