from flask import Blueprint, request, current_app
from flask_login import login_user, logout_user, login_required, current_user
from werkzeug.security import check_password_hash

from boltstax_portal.models import db, User, get_now
from boltstax_portal.services.invitation_service import InvitationService
from boltstax_portal.services.question_service import QuestionService
from boltstax_portal.utils import api_response

auth_bp = Blueprint('auth', __name__)


@auth_bp.route('/api/auth/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip()
    password = data.get('password') or ''
    if not email or not password:
        return api_response(success=False, error='Email and password are required', status=400)

    user = User.query.filter_by(email=email).first()
    if not user or not check_password_hash(user.password_hash, password):
        current_app.logger.info("Failed login for %s", email)
        return api_response(success=False, error='Invalid email or password', status=401)

    login_user(user, remember=bool(data.get('remember')))
    user.last_login = get_now()
    db.session.commit()
    return api_response(data=user.to_dict())


@auth_bp.route('/api/auth/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return api_response()


@auth_bp.route('/api/auth/me', methods=['GET'])
@login_required
def me():
    return api_response(data=current_user.to_dict())


@auth_bp.route('/api/auth/register', methods=['POST'])
def register():
    user = InvitationService.register_company(request.get_json(silent=True))
    login_user(user)
    return api_response(data=user.to_dict(), status=201)


@auth_bp.route('/api/invites/<code>', methods=['GET'])
def get_invite(code):
    """Signup page data: the invite plus the questions its tags require."""
    invite = InvitationService.get_invite_data(code)
    questions = QuestionService.get_questions_by_tags(invite.tags) if invite.tags else []
    return api_response(data={
        'invite': invite.to_dict(),
        'questions': [q.to_dict() for q in questions]
    })


@auth_bp.route('/api/invites/<code>/redeem', methods=['POST'])
def redeem_invite(code):
    user = InvitationService.redeem_invite(code, request.get_json(silent=True))
    login_user(user)
    current_app.logger.info("Invite %s redeemed by user %s", code, user.id)
    return api_response(data=user.to_dict(), status=201)
