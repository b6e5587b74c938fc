import copy
import logging

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.exc import SQLAlchemyError

from boltstax_portal.errors import ConcurrentUpdateError, NotFound, ServiceError, ValidationError
from boltstax_portal.models import (
    db, ProductSheet, QuestionnaireResponse, ResponseDraft,
    RESPONSE_STATUS_PENDING, RESPONSE_STATUS_SUBMITTED, get_now, iso
)
from boltstax_portal.services.question_service import is_answered
from boltstax_portal.utils import create_notification

logger = logging.getLogger(__name__)


def build_sections(questions):
    """Empty SectionResponse list for a set of questions, grouped by section."""
    sections = []
    by_section = {}
    for question in questions:
        if question.section_id not in by_section:
            entry = {'sectionId': question.section_id, 'responses': []}
            by_section[question.section_id] = entry
            sections.append(entry)
        by_section[question.section_id]['responses'].append({
            'questionId': question.id,
            'value': None,
            'fileUrls': None,
            'updatedAt': None,
            'updatedBy': None,
        })
    return sections


def completion_rate(sections, resolved=()):
    """
    answered / total x 100 across every section's question responses.
    Question ids in `resolved` count as done even when left blank.
    """
    total = 0
    answered = 0
    for section in sections or []:
        for response in section.get('responses', []):
            total += 1
            if response.get('questionId') in resolved or is_answered(response.get('value')):
                answered += 1
    return (answered / total) * 100 if total else 0.0


def merge_answer(sections, section_id, question_id, value, user_id, file_urls=None, now=None):
    """
    Returns a copy of `sections` with the answer upserted into the matching
    section (appending the section or the question response when absent).
    """
    now = now or get_now()
    updated = copy.deepcopy(sections or [])
    entry = {
        'questionId': question_id,
        'value': value,
        'fileUrls': file_urls,
        'updatedAt': iso(now),
        'updatedBy': user_id,
    }

    section = next((s for s in updated if s.get('sectionId') == section_id), None)
    if section is None:
        updated.append({'sectionId': section_id, 'responses': [entry]})
        return updated

    responses = section.setdefault('responses', [])
    for index, response in enumerate(responses):
        if response.get('questionId') == question_id:
            responses[index] = {**response, **entry}
            break
    else:
        responses.append(entry)
    return updated


def has_question(sections, section_id, question_id):
    return any(
        s.get('sectionId') == section_id and
        any(r.get('questionId') == question_id for r in s.get('responses', []))
        for s in sections or []
    )


class ResponseService:
    @staticmethod
    def get_response(response_id):
        response = QuestionnaireResponse.query.get(response_id)
        if not response:
            raise NotFound("Response not found")
        return response

    @staticmethod
    def get_questionnaire_response(product_sheet_id, supplier_id):
        return QuestionnaireResponse.query.filter_by(
            product_sheet_id=product_sheet_id,
            supplier_id=supplier_id
        ).first()

    @staticmethod
    def create_questionnaire_response(template_id, product_sheet_id, supplier_id, sections, commit=True):
        response = QuestionnaireResponse(
            template_id=template_id,
            product_sheet_id=product_sheet_id,
            supplier_id=supplier_id,
            sections=sections,
            status=RESPONSE_STATUS_PENDING,
            completion_rate=completion_rate(sections)
        )
        db.session.add(response)
        if commit:
            db.session.commit()
        return response

    @staticmethod
    def update_question_response(response_id, section_id, question_id, value, user_id, file_urls=None):
        """
        Debounced autosave. Repeated calls for the same question inside the
        debounce window collapse into one write with the last value.
        """
        scheduler = current_app.extensions['autosave']
        return scheduler.schedule(
            (response_id, question_id),
            ResponseService.save_question_response,
            response_id, section_id, question_id, value, user_id, file_urls
        )

    @staticmethod
    def save_question_response(response_id, section_id, question_id, value, user_id, file_urls=None):
        """
        Autosave write: append a ResponseDraft, then merge the answer into the
        response and recompute its completion rate. The response row is
        compare-and-swapped on its revision; a lost race re-reads and retries.
        """
        response = ResponseService.get_response(response_id)
        if response.status == RESPONSE_STATUS_SUBMITTED:
            logger.info("Response %s already submitted, dropping autosave of %s", response_id, question_id)
            return response
        if not has_question(response.sections, section_id, question_id):
            raise ValidationError(
                "Question is not part of this questionnaire",
                field_errors={'questionId': f"Unknown question {question_id} in section {section_id}"}
            )
        db.session.add(ResponseDraft(
            response_id=response_id,
            question_id=question_id,
            value=value,
            file_urls=file_urls
        ))
        db.session.commit()

        retries = current_app.config.get('AUTOSAVE_MAX_RETRIES', 3)
        for attempt in range(retries + 1):
            response = ResponseService.get_response(response_id)
            if response.status == RESPONSE_STATUS_SUBMITTED:
                return response
            sections = merge_answer(response.sections, section_id, question_id, value, user_id, file_urls)
            response.sections = sections
            response.completion_rate = completion_rate(sections)
            response.last_updated = get_now()
            try:
                db.session.commit()
                return response
            except StaleDataError:
                db.session.rollback()
                logger.warning("Response %s changed concurrently (attempt %s)", response_id, attempt + 1)
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error("Error auto-saving response %s question %s: %s", response_id, question_id, e)
                raise ServiceError("Failed to save response") from e

        raise ConcurrentUpdateError(f"Response {response_id} is being edited concurrently")

    @staticmethod
    def submit_questionnaire_response(response_id, user_id=None):
        response = ResponseService.get_response(response_id)
        now = get_now()
        response.status = RESPONSE_STATUS_SUBMITTED
        response.submitted_at = now
        response.submitted_by = user_id
        sections = copy.deepcopy(response.sections or [])
        for section in sections:
            section.setdefault('completedAt', iso(now))
        response.sections = sections

        sheet = ProductSheet.query.get(response.product_sheet_id)
        if sheet:
            from boltstax_portal.services.sheet_service import SheetService  # Lazy Import
            requester_id = SheetService.get_requester_id(sheet.id)
            if requester_id:
                create_notification(
                    company_id=requester_id,
                    type='questionnaireSubmitted',
                    title='Questionnaire submitted',
                    message=f"{sheet.supplier.name if sheet.supplier else 'Supplier'} submitted \"{sheet.name}\".",
                    product_sheet_id=sheet.id,
                    related_company_id=response.supplier_id
                )
        try:
            db.session.commit()
        except StaleDataError as e:
            db.session.rollback()
            raise ConcurrentUpdateError(f"Response {response_id} changed during submission") from e
        return response

    @staticmethod
    def get_latest_draft(response_id):
        return ResponseDraft.query.filter_by(response_id=response_id)\
            .order_by(ResponseDraft.saved_at.desc()).first()

    @staticmethod
    def get_drafts(response_id):
        return ResponseDraft.query.filter_by(response_id=response_id)\
            .order_by(ResponseDraft.saved_at.desc()).all()
