from flask import Blueprint
from flask_login import login_required

from boltstax_portal.errors import AccessDenied, NotFound
from boltstax_portal.models import db, Notification, get_now
from boltstax_portal.utils import api_response, current_company_id

notifications_bp = Blueprint('notifications', __name__)


@notifications_bp.route('/api/notifications', methods=['GET'])
@login_required
def get_notifications():
    company_id = current_company_id()
    # Fetch unread first, then recent read ones (limit 20 total)
    unread = Notification.query.filter_by(company_id=company_id, read=False)\
        .order_by(Notification.created_at.desc()).all()

    read_limit = 20 - len(unread)
    read = []
    if read_limit > 0:
        read = Notification.query.filter_by(company_id=company_id, read=True)\
            .order_by(Notification.created_at.desc()).limit(read_limit).all()

    notifications = sorted(unread + read, key=lambda n: n.created_at, reverse=True)
    return api_response(
        data=[n.to_dict() for n in notifications],
        unread_count=len(unread)
    )


@notifications_bp.route('/api/notifications/<notification_id>/read', methods=['POST'])
@login_required
def mark_read(notification_id):
    notification = Notification.query.get(notification_id)
    if not notification:
        raise NotFound("Notification not found")
    if notification.company_id != current_company_id():
        raise AccessDenied("Notification belongs to another company")

    notification.read = True
    notification.read_at = get_now()
    db.session.commit()
    return api_response(data=notification.to_dict())


@notifications_bp.route('/api/notifications/read-all', methods=['POST'])
@login_required
def mark_all_read():
    Notification.query.filter_by(company_id=current_company_id(), read=False)\
        .update({'read': True, 'read_at': get_now()})
    db.session.commit()
    return api_response()
