import logging
import secrets

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from boltstax_portal.errors import (
    AccessDenied, InvalidStatusTransition, NotFound, ServiceError, ValidationError
)
from boltstax_portal.models import (
    db, Company, CompanyProduct, ProductSheet, QuestionnaireResponse, ResponseDraft,
    SupplierAnswer, EMAIL_TEMPLATES, RESPONSE_STATUS_SUBMITTED,
    SHEET_STATUS_COMPLETED, SHEET_STATUS_DRAFT, SHEET_STATUS_IN_PROGRESS, SHEET_STATUS_SENT,
    SHEET_TRANSITIONS, get_now
)
from boltstax_portal.schemas import (
    ProductSheetSchema, ProductSheetUpdateSchema, SubmissionSchema, validate
)
from boltstax_portal.services.email_service import EmailService
from boltstax_portal.services.question_service import QuestionService, is_answered
from boltstax_portal.services.response_service import (
    ResponseService, build_sections, completion_rate, merge_answer
)
from boltstax_portal.services.template_service import TemplateService
from boltstax_portal.utils import build_url, create_notification, format_date

logger = logging.getLogger(__name__)


class SheetService:
    @staticmethod
    def create_product_sheet(company_id, payload):
        data = validate(ProductSheetSchema, payload)
        requester = Company.query.get(company_id)
        if not requester:
            raise NotFound(f"Company {company_id} not found")
        supplier = Company.query.get(data.supplier_id)
        if not supplier:
            raise NotFound(f"Supplier {data.supplier_id} not found")
        if data.template_id:
            TemplateService.get_template(data.template_id)

        try:
            sheet = ProductSheet(
                name=data.name,
                supplier_id=supplier.id,
                template_id=data.template_id,
                selected_tags=list(data.selected_tags),
                status=SHEET_STATUS_DRAFT,
                due_date=data.due_date,
                access_token=secrets.token_urlsafe(32),
                responses={}
            )
            db.session.add(sheet)
            db.session.flush()
            db.session.add(CompanyProduct(company_id=requester.id, product_sheet_id=sheet.id))
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Error creating product sheet for company %s: %s", company_id, e)
            raise ServiceError("Failed to create product sheet") from e
        return sheet

    @staticmethod
    def get_sheet(sheet_id):
        sheet = ProductSheet.query.get(sheet_id)
        if not sheet:
            raise NotFound("Product sheet not found")
        return sheet

    @staticmethod
    def get_all_sheets(company_id):
        """Sheets requested by the company, newest first."""
        return ProductSheet.query.join(
            CompanyProduct, CompanyProduct.product_sheet_id == ProductSheet.id
        ).filter(CompanyProduct.company_id == company_id)\
            .order_by(ProductSheet.created_at.desc()).all()

    @staticmethod
    def get_supplier_sheets(supplier_id):
        return ProductSheet.query.filter_by(supplier_id=supplier_id)\
            .order_by(ProductSheet.created_at.desc()).all()

    @staticmethod
    def get_requester_id(sheet_id):
        link = CompanyProduct.query.filter_by(product_sheet_id=sheet_id).first()
        return link.company_id if link else None

    @staticmethod
    def check_owner(sheet, company_id):
        if SheetService.get_requester_id(sheet.id) != company_id:
            raise AccessDenied("Product sheet belongs to another company")

    @staticmethod
    def update_sheet(sheet_id, updates):
        data = validate(ProductSheetUpdateSchema, updates)
        sheet = SheetService.get_sheet(sheet_id)
        if data.name is not None:
            sheet.name = data.name
        if data.due_date is not None:
            sheet.due_date = data.due_date
        if data.selected_tags is not None:
            sheet.selected_tags = list(data.selected_tags)
        sheet.updated_at = get_now()
        db.session.commit()
        return sheet

    @staticmethod
    def _transition(sheet, target):
        if SHEET_TRANSITIONS.get(sheet.status) != target:
            raise InvalidStatusTransition(f"Cannot move sheet from {sheet.status} to {target}")
        sheet.status = target
        sheet.updated_at = get_now()

    @staticmethod
    def _supplier_contact(sheet):
        supplier = Company.query.get(sheet.supplier_id)
        if not supplier or not supplier.email:
            raise NotFound("Supplier contact email not found")
        return supplier

    @staticmethod
    def _sheet_email_data(sheet, supplier):
        return {
            'contactName': supplier.contact_name or supplier.name,
            'supplierName': supplier.name,
            'sheetName': sheet.name,
            'dueDate': format_date(sheet.due_date),
            'accessUrl': build_url(f'/sheets/{sheet.id}', token=sheet.access_token)
        }

    @staticmethod
    def send_sheet(sheet_id):
        """
        draft -> sent. The email goes out first; if it fails the sheet stays in
        draft and the error propagates.
        """
        sheet = SheetService.get_sheet(sheet_id)
        if sheet.status != SHEET_STATUS_DRAFT:
            raise InvalidStatusTransition(f"Only draft sheets can be sent (status: {sheet.status})")
        supplier = SheetService._supplier_contact(sheet)

        EmailService.send_email(
            to=supplier.email,
            template=EMAIL_TEMPLATES.sheet_created,
            data=SheetService._sheet_email_data(sheet, supplier),
            company_id=SheetService.get_requester_id(sheet.id)
        )

        SheetService._transition(sheet, SHEET_STATUS_SENT)
        sheet.sent_at = get_now()
        create_notification(
            company_id=supplier.id,
            type='questionnaireAssigned',
            title='New questionnaire',
            message=f"You have been asked to complete \"{sheet.name}\".",
            product_sheet_id=sheet.id,
            related_company_id=SheetService.get_requester_id(sheet.id)
        )
        db.session.commit()
        return sheet

    @staticmethod
    def send_reminder(sheet_id):
        sheet = SheetService.get_sheet(sheet_id)
        if sheet.status not in (SHEET_STATUS_SENT, SHEET_STATUS_IN_PROGRESS):
            raise InvalidStatusTransition(f"Cannot remind on a {sheet.status} sheet")
        supplier = SheetService._supplier_contact(sheet)
        return EmailService.send_email(
            to=supplier.email,
            template=EMAIL_TEMPLATES.sheet_reminder,
            data=SheetService._sheet_email_data(sheet, supplier),
            company_id=SheetService.get_requester_id(sheet.id)
        )

    @staticmethod
    def verify_access_token(sheet, token):
        if not token or not secrets.compare_digest(str(token), sheet.access_token):
            raise AccessDenied("Invalid access token")

    @staticmethod
    def get_sheet_questions(sheet):
        return QuestionService.get_questions_by_tags(sheet.selected_tags, template_id=sheet.template_id)

    @staticmethod
    def open_sheet(sheet_id, token):
        """Supplier opens the sheet: sent -> inProgress, response created once."""
        sheet = SheetService.get_sheet(sheet_id)
        SheetService.verify_access_token(sheet, token)

        response = ResponseService.get_questionnaire_response(sheet.id, sheet.supplier_id)
        if sheet.status == SHEET_STATUS_IN_PROGRESS and response:
            return sheet, response

        try:
            if sheet.status != SHEET_STATUS_IN_PROGRESS:
                SheetService._transition(sheet, SHEET_STATUS_IN_PROGRESS)
            if not response:
                response = ResponseService.create_questionnaire_response(
                    template_id=sheet.template_id,
                    product_sheet_id=sheet.id,
                    supplier_id=sheet.supplier_id,
                    sections=build_sections(SheetService.get_sheet_questions(sheet)),
                    commit=False
                )
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Error opening sheet %s: %s", sheet_id, e)
            raise ServiceError("Failed to open product sheet") from e
        return sheet, response

    @staticmethod
    def submit_sheet(sheet_id, token, payload, user_id=None):
        """
        Final submission. Required questions must be answered. The sheet is
        committed as completed before the requester is emailed; any failure
        while notifying is logged and leaves the sheet completed. Blank
        optional questions count as done in the final completion rate.
        """
        data = validate(SubmissionSchema, payload)
        user_id = user_id or data.user_id
        sheet = SheetService.get_sheet(sheet_id)
        SheetService.verify_access_token(sheet, token)
        if sheet.status != SHEET_STATUS_IN_PROGRESS:
            raise InvalidStatusTransition(f"Only in-progress sheets can be submitted (status: {sheet.status})")

        questions = SheetService.get_sheet_questions(sheet)
        field_errors = {
            q.id: 'This question requires an answer'
            for q in questions
            if q.required and not is_answered(data.answers.get(q.id))
        }
        if field_errors:
            raise ValidationError("Required questions are not answered", field_errors=field_errors)

        now = get_now()
        requester_id = SheetService.get_requester_id(sheet.id)
        try:
            answers = {q.id: data.answers[q.id] for q in questions if q.id in data.answers}
            for question_id, value in answers.items():
                db.session.add(SupplierAnswer(
                    company_id=sheet.supplier_id,
                    product_sheet_id=sheet.id,
                    question_id=question_id,
                    value=value
                ))
            sheet.responses = dict(answers)

            response = ResponseService.get_questionnaire_response(sheet.id, sheet.supplier_id)
            if not response:
                response = ResponseService.create_questionnaire_response(
                    template_id=sheet.template_id,
                    product_sheet_id=sheet.id,
                    supplier_id=sheet.supplier_id,
                    sections=build_sections(questions),
                    commit=False
                )
            else:
                # Submitted answers supersede drafts still waiting on the debounce
                current_app.extensions['autosave'].cancel_matching(lambda key: key[0] == response.id)
            sections = response.sections or build_sections(questions)
            by_id = {q.id: q for q in questions}
            for question_id, value in answers.items():
                sections = merge_answer(sections, by_id[question_id].section_id, question_id, value, user_id, now=now)
            response.sections = sections
            optional = {q.id for q in questions if not q.required}
            response.completion_rate = completion_rate(sections, resolved=optional)
            response.status = RESPONSE_STATUS_SUBMITTED
            response.submitted_at = now
            response.submitted_by = user_id

            SheetService._transition(sheet, SHEET_STATUS_COMPLETED)
            sheet.submitted_at = now

            if requester_id:
                create_notification(
                    company_id=requester_id,
                    type='questionnaireSubmitted',
                    title='Questionnaire submitted',
                    message=f"{sheet.supplier.name if sheet.supplier else 'Supplier'} submitted \"{sheet.name}\".",
                    product_sheet_id=sheet.id,
                    related_company_id=sheet.supplier_id
                )
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Error submitting sheet %s: %s", sheet_id, e)
            raise ServiceError("Failed to submit product sheet") from e

        requester = Company.query.get(requester_id) if requester_id else None
        if requester and requester.email:
            try:
                EmailService.send_email(
                    to=requester.email,
                    template=EMAIL_TEMPLATES.sheet_submitted,
                    data={
                        'contactName': requester.contact_name or requester.name,
                        'supplierName': sheet.supplier.name if sheet.supplier else '',
                        'sheetName': sheet.name,
                        'accessUrl': build_url(f'/product-sheets/{sheet.id}')
                    },
                    company_id=requester.id
                )
            except Exception as e:
                # The submission is already committed
                if isinstance(e, SQLAlchemyError):
                    db.session.rollback()
                logger.exception("Submission email for sheet %s failed: %s", sheet.id, e)
        return sheet

    @staticmethod
    def _delete_sheet_rows(sheet_ids):
        if not sheet_ids:
            return
        response_ids = [r.id for r in QuestionnaireResponse.query.filter(
            QuestionnaireResponse.product_sheet_id.in_(sheet_ids)).all()]
        if response_ids:
            ResponseDraft.query.filter(ResponseDraft.response_id.in_(response_ids))\
                .delete(synchronize_session=False)
            QuestionnaireResponse.query.filter(QuestionnaireResponse.id.in_(response_ids))\
                .delete(synchronize_session=False)
        CompanyProduct.query.filter(CompanyProduct.product_sheet_id.in_(sheet_ids))\
            .delete(synchronize_session=False)
        SupplierAnswer.query.filter(SupplierAnswer.product_sheet_id.in_(sheet_ids))\
            .delete(synchronize_session=False)
        ProductSheet.query.filter(ProductSheet.id.in_(sheet_ids))\
            .delete(synchronize_session=False)

    @staticmethod
    def delete_sheet(sheet_id, company_id=None):
        """Deletes the sheet with its index rows, responses and drafts. Idempotent."""
        sheet = ProductSheet.query.get(sheet_id)
        if sheet and company_id:
            SheetService.check_owner(sheet, company_id)
        try:
            SheetService._delete_sheet_rows([sheet_id])
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Error deleting sheet %s: %s", sheet_id, e)
            raise ServiceError("Failed to delete product sheet") from e

    @staticmethod
    def purge_company_sheets(company_id):
        """Removes sheets requested by or addressed to the company. No commit."""
        requested = [link.product_sheet_id for link in
                     CompanyProduct.query.filter_by(company_id=company_id).all()]
        supplied = [sheet.id for sheet in
                    ProductSheet.query.filter_by(supplier_id=company_id).all()]
        SheetService._delete_sheet_rows(list(dict.fromkeys(requested + supplied)))
