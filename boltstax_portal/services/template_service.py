import logging

from sqlalchemy.exc import SQLAlchemyError

from boltstax_portal.errors import NotFound, ServiceError, ValidationError
from boltstax_portal.models import (
    db, Question, QuestionnaireSection, QuestionnaireTemplate, TemplateVersion, get_now
)
from boltstax_portal.schemas import QuestionSchema, TemplateSchema, TemplateUpdateSchema, validate
from boltstax_portal.services.question_service import QuestionService, question_kwargs

logger = logging.getLogger(__name__)


class TemplateService:
    @staticmethod
    def _build_sections(template, sections):
        for index, section_data in enumerate(sections):
            section = QuestionnaireSection(
                title=section_data.title,
                description=section_data.description,
                order=section_data.order if section_data.order else index
            )
            for q_index, question_data in enumerate(section_data.questions):
                question = Question(**question_kwargs(question_data))
                if not question_data.order:
                    question.order = q_index
                question.tags = QuestionService.resolve_tags(question_data.tags)
                section.questions.append(question)
            template.sections.append(section)

    @staticmethod
    def create_template(payload, created_by=None):
        data = validate(TemplateSchema, payload)
        try:
            template = QuestionnaireTemplate(
                title=data.title,
                description=data.description,
                tags=list(data.tags),
                created_by=created_by,
                is_archived=False,
                version=1
            )
            TemplateService._build_sections(template, data.sections)
            db.session.add(template)
            db.session.commit()
        except ValidationError:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Error creating template %s: %s", data.title, e)
            raise ServiceError("Failed to create template") from e
        return template

    @staticmethod
    def get_template(template_id):
        template = QuestionnaireTemplate.query.get(template_id)
        if not template:
            raise NotFound("Template not found")
        return template

    @staticmethod
    def get_templates(include_archived=False):
        query = QuestionnaireTemplate.query
        if not include_archived:
            query = query.filter_by(is_archived=False)
        return query.order_by(QuestionnaireTemplate.title).all()

    @staticmethod
    def get_templates_by_tags(tags, include_archived=False):
        wanted = set(tags or [])
        return [t for t in TemplateService.get_templates(include_archived)
                if wanted & set(t.tags or [])]

    @staticmethod
    def _snapshot(template, change_description, updated_by):
        """Stores the current (pre-change) state under the current version number."""
        db.session.add(TemplateVersion(
            template_id=template.id,
            version=template.version,
            changes=[change_description],
            sections=template.sections_snapshot(),
            updated_by=updated_by
        ))

    @staticmethod
    def update_template(template_id, updates, change_description=None, updated_by=None):
        """
        Snapshot the pre-update sections into a TemplateVersion, apply the
        updates and bump the version by one.
        """
        data = validate(TemplateUpdateSchema, updates)
        change_description = change_description or data.change_description
        template = TemplateService.get_template(template_id)

        try:
            TemplateService._snapshot(template, change_description, updated_by)

            if data.title is not None:
                template.title = data.title
            if data.description is not None:
                template.description = data.description
            if data.tags is not None:
                template.tags = list(data.tags)
            if data.sections is not None:
                template.sections.clear()
                db.session.flush()
                TemplateService._build_sections(template, data.sections)

            template.version = template.version + 1
            template.updated_at = get_now()
            db.session.commit()
        except ValidationError:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Error updating template %s: %s", template_id, e)
            raise ServiceError("Failed to update template") from e
        return template

    @staticmethod
    def archive_template(template_id):
        template = TemplateService.get_template(template_id)
        template.is_archived = True
        template.updated_at = get_now()
        db.session.commit()
        return template

    @staticmethod
    def get_template_version(template_id, version):
        return TemplateVersion.query.filter_by(template_id=template_id, version=version).first()

    @staticmethod
    def get_template_versions(template_id):
        return TemplateVersion.query.filter_by(template_id=template_id)\
            .order_by(TemplateVersion.version.desc()).all()

    @staticmethod
    def add_question_to_section(template_id, section_id, payload, updated_by=None):
        data = validate(QuestionSchema, payload)
        template = TemplateService.get_template(template_id)
        section = QuestionnaireSection.query.filter_by(id=section_id, template_id=template.id).first()
        if not section:
            raise NotFound("Section not found")

        try:
            TemplateService._snapshot(template, f"Added question: {data.text}", updated_by)

            question = Question(section_id=section.id, **question_kwargs(data))
            if not data.order:
                question.order = len(section.questions)
            question.tags = QuestionService.resolve_tags(data.tags)
            db.session.add(question)

            template.version = template.version + 1
            template.updated_at = get_now()
            db.session.commit()
        except ValidationError:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Error adding question to section %s: %s", section_id, e)
            raise ServiceError("Failed to add question") from e
        return question
