from datetime import datetime
from urllib.parse import urlencode
from flask import jsonify, current_app
from boltstax_portal.models import db, Notification


def api_response(success=True, data=None, error=None, status=200, **extra):
    """Standardized JSON response for all API routes."""
    response = {
        'success': success,
        'data': data,
        'error': error
    }
    response.update(extra)
    return jsonify(response), status


def create_notification(company_id, type, title, message, product_sheet_id=None, related_company_id=None):
    """
    Queues a notification on the current session.
    The caller commits it together with the change that triggered it.
    """
    notification = Notification(
        company_id=company_id,
        type=type,
        title=title,
        message=message,
        product_sheet_id=product_sheet_id,
        related_company_id=related_company_id
    )
    db.session.add(notification)
    return notification


def build_url(path, **params):
    """Absolute front-end URL for capability links sent by email."""
    base = current_app.config['APP_BASE_URL'].rstrip('/')
    url = f"{base}/{path.lstrip('/')}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return url


def format_date(value):
    if not value:
        return None
    if isinstance(value, datetime):
        return value.strftime('%d/%m/%Y')
    return str(value)


def merge_unique(items, *new_items):
    """Set-union on an id list, keeping the original order."""
    result = list(items or [])
    for item in new_items:
        if item not in result:
            result.append(item)
    return result


def remove_items(items, *old_items):
    return [item for item in (items or []) if item not in old_items]


def current_company_id():
    """Company of the logged-in user; users without one cannot use company routes."""
    from flask_login import current_user
    from boltstax_portal.errors import AccessDenied
    if not current_user.is_authenticated or not current_user.company_id:
        raise AccessDenied("User has no company")
    return current_user.company_id
