import logging
import re

import resend
from flask import render_template, current_app

from boltstax_portal.errors import ConfigurationMissing, EmailDeliveryError, ValidationError
from boltstax_portal.models import EmailLog, EMAIL_TEMPLATES

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')


class EmailService:

    # Mapping Enum -> (Filename, Subject)
    TEMPLATE_FILES = {
        EMAIL_TEMPLATES.supplier_invitation: ("supplier_invitation.html", "Invitation to Join BoltStax"),
        EMAIL_TEMPLATES.customer_invitation: ("customer_invitation.html", "Invitation to Join BoltStax"),
        EMAIL_TEMPLATES.sheet_created: ("sheet_created.html", "New Product Sheet Questionnaire"),
        EMAIL_TEMPLATES.sheet_reminder: ("sheet_reminder.html", "Reminder: Product Sheet Questionnaire Due Soon"),
        EMAIL_TEMPLATES.sheet_submitted: ("sheet_submitted.html", "Product Sheet Questionnaire Submitted"),
    }

    @staticmethod
    def send_email(to, template, data, company_id=None):
        """
        Sends one templated email through Resend.
        :param to: Recipient address.
        :param template: EMAIL_TEMPLATES member (or its value, e.g. "SHEET_CREATED").
        :param data: Template context (contactName, companyName, supplierName, sheetName, dueDate, accessUrl).
        Returns the provider message id. Raises on any failure; success means the
        provider accepted the send, not that it was delivered.
        """
        api_key = current_app.config.get('RESEND_API_KEY')
        from_email_addr = current_app.config.get('EMAIL_FROM')
        if not api_key or not from_email_addr:
            logger.error("Missing email configuration (has_key=%s, has_from=%s)", bool(api_key), bool(from_email_addr))
            raise ConfigurationMissing("Email configuration is missing")

        if not to or not template or data is None:
            raise ValidationError("Missing required email data")

        if not isinstance(template, EMAIL_TEMPLATES):
            try:
                template = EMAIL_TEMPLATES(template)
            except ValueError:
                raise ValidationError("Invalid email template")

        if not EMAIL_RE.match(to):
            raise ValidationError("Invalid recipient email address")

        filename, subject = EmailService.TEMPLATE_FILES[template]

        from_name = current_app.config.get('EMAIL_NAME', 'BoltStax')
        from_full = f"{from_name} <{from_email_addr}>"

        context = dict(data)
        context['app_name'] = from_name
        html_content = render_template(f"emails/{filename}", **context)

        logger.info("Sending email to=%s template=%s data=%s", to, template.value,
                    {**data, 'accessUrl': '[REDACTED]'})

        resend.api_key = api_key
        try:
            response = resend.Emails.send({
                "from": from_full,
                "to": [to],
                "subject": subject,
                "html": html_content,
            })
        except Exception as e:
            error_msg = str(e)
            logger.error("Resend error for template %s: %s", template.value, error_msg)
            EmailLog.create_log(
                email_to=to,
                subject=subject,
                status='failed',
                template=template,
                company_id=company_id,
                error_message=error_msg
            )
            raise EmailDeliveryError(f"Email sending failed: {error_msg}") from e

        # Resend SDK returns a dict like {'id': '...'} or an object
        provider_id = None
        if isinstance(response, dict):
            provider_id = response.get('id')
        elif hasattr(response, 'id'):
            provider_id = response.id

        EmailLog.create_log(
            email_to=to,
            subject=subject,
            status='sent',
            template=template,
            company_id=company_id,
            provider_message_id=provider_id
        )
        return provider_id
