import logging

from sqlalchemy.exc import SQLAlchemyError

from boltstax_portal.errors import NotFound, ServiceError, ValidationError
from boltstax_portal.models import (
    db, Company, Invite, ProductSheet, Question, QuestionnaireSection, QuestionnaireTemplate, Tag
)
from boltstax_portal.schemas import (
    QuestionSchema, QuestionUpdateSchema, TagSchema, TagUpdateSchema, validate
)
from boltstax_portal.utils import remove_items

logger = logging.getLogger(__name__)

DEFAULT_BANK_SECTION = 'General'

# JSON id lists that may carry tag ids
TAGGED_COLUMNS = (
    (Company, 'tags'),
    (Invite, 'tags'),
    (ProductSheet, 'selected_tags'),
    (QuestionnaireTemplate, 'tags'),
)


def is_answered(value):
    """None, blank strings and empty lists count as unanswered."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def question_kwargs(data):
    """Column values for a Question built from a validated QuestionSchema."""
    return {
        'text': data.text,
        'type': data.type,
        'required': data.required,
        'description': data.description,
        'options': [o.model_dump(exclude_none=True) for o in data.options] if data.options else None,
        'validation': data.validation.model_dump(by_alias=True, exclude_none=True) if data.validation else None,
        'order': data.order,
    }


class QuestionService:

    # ---------- Tags ----------

    @staticmethod
    def get_tags():
        return Tag.query.order_by(Tag.name).all()

    @staticmethod
    def get_tag(tag_id):
        tag = Tag.query.get(tag_id)
        if not tag:
            raise NotFound(f"Tag {tag_id} not found")
        return tag

    @staticmethod
    def resolve_tags(tag_ids):
        """Loads Tag rows for the given ids; unknown ids are a validation error."""
        if not tag_ids:
            return []
        tags = Tag.query.filter(Tag.id.in_(tag_ids)).all()
        found = {t.id for t in tags}
        missing = [t for t in tag_ids if t not in found]
        if missing:
            raise ValidationError("Unknown tags", field_errors={'tags': f"Unknown tag ids: {', '.join(missing)}"})
        return tags

    @staticmethod
    def create_tag(payload):
        data = validate(TagSchema, payload)
        tag = Tag(name=data.name, color=data.color, description=data.description)
        db.session.add(tag)
        db.session.commit()
        return tag

    @staticmethod
    def update_tag(tag_id, payload):
        data = validate(TagUpdateSchema, payload)
        tag = QuestionService.get_tag(tag_id)
        for field in ('name', 'color', 'description'):
            value = getattr(data, field)
            if value is not None:
                setattr(tag, field, value)
        db.session.commit()
        return tag

    @staticmethod
    def delete_tag(tag_id):
        """Deletes the tag and strips its id from every record that lists it."""
        tag = QuestionService.get_tag(tag_id)
        try:
            for model, field in TAGGED_COLUMNS:
                for row in model.query.all():
                    if tag_id in (getattr(row, field) or []):
                        setattr(row, field, remove_items(getattr(row, field), tag_id))
            db.session.delete(tag)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Error deleting tag %s: %s", tag_id, e)
            raise ServiceError("Failed to delete tag") from e

    # ---------- Question bank ----------

    @staticmethod
    def get_bank_sections():
        return QuestionnaireSection.query.filter(QuestionnaireSection.template_id.is_(None))\
            .order_by(QuestionnaireSection.order).all()

    @staticmethod
    def create_bank_section(title, description=None, order=None):
        if not title:
            raise ValidationError("Section title is required", field_errors={'title': 'Required'})
        if order is None:
            order = len(QuestionService.get_bank_sections())
        section = QuestionnaireSection(title=title, description=description, order=order)
        db.session.add(section)
        db.session.commit()
        return section

    @staticmethod
    def _default_bank_section():
        section = QuestionnaireSection.query.filter(
            QuestionnaireSection.template_id.is_(None),
            QuestionnaireSection.title == DEFAULT_BANK_SECTION
        ).first()
        if not section:
            section = QuestionnaireSection(title=DEFAULT_BANK_SECTION, order=0)
            db.session.add(section)
            db.session.flush()
        return section

    @staticmethod
    def get_questions(tags=None):
        """Question bank, optionally restricted to questions carrying any of `tags`."""
        if tags:
            return QuestionService.get_questions_by_tags(tags)
        return Question.query.join(QuestionnaireSection)\
            .filter(QuestionnaireSection.template_id.is_(None))\
            .order_by(QuestionnaireSection.order, Question.order).all()

    @staticmethod
    def get_question(question_id):
        question = Question.query.get(question_id)
        if not question:
            raise NotFound(f"Question {question_id} not found")
        return question

    @staticmethod
    def get_questions_by_tags(tags, template_id=None):
        """
        Questions having at least one of `tags`. Scoped to a template's sections
        when template_id is given, to the question bank otherwise.
        """
        if not tags:
            return []
        query = Question.query.join(QuestionnaireSection)\
            .filter(Question.tags.any(Tag.id.in_(list(tags))))
        if template_id:
            query = query.filter(QuestionnaireSection.template_id == template_id)
        else:
            query = query.filter(QuestionnaireSection.template_id.is_(None))
        return query.order_by(QuestionnaireSection.order, Question.order).all()

    @staticmethod
    def add_question(payload):
        data = validate(QuestionSchema, payload)
        try:
            if data.section_id:
                section = QuestionnaireSection.query.get(data.section_id)
                if not section:
                    raise NotFound(f"Section {data.section_id} not found")
            else:
                section = QuestionService._default_bank_section()

            question = Question(section_id=section.id, **question_kwargs(data))
            question.tags = QuestionService.resolve_tags(data.tags)
            db.session.add(question)
            db.session.commit()
        except (NotFound, ValidationError):
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Error adding question: %s", e)
            raise ServiceError("Failed to add question") from e
        return question

    @staticmethod
    def update_question(question_id, payload):
        data = validate(QuestionUpdateSchema, payload)
        question = QuestionService.get_question(question_id)

        for field in ('text', 'type', 'required', 'description', 'order'):
            value = getattr(data, field)
            if value is not None:
                setattr(question, field, value)
        if data.options is not None:
            question.options = [o.model_dump(exclude_none=True) for o in data.options]
        if data.validation is not None:
            question.validation = data.validation.model_dump(by_alias=True, exclude_none=True)
        if data.tags is not None:
            question.tags = QuestionService.resolve_tags(data.tags)

        db.session.commit()
        return question

    @staticmethod
    def delete_question(question_id):
        question = QuestionService.get_question(question_id)
        db.session.delete(question)
        db.session.commit()
