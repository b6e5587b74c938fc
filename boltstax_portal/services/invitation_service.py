import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.security import generate_password_hash

from boltstax_portal.errors import (
    EmailMismatch, InviteAlreadyUsed, NotFound, ServiceError, ValidationError
)
from boltstax_portal.models import (
    db, Company, Invite, Notification, SupplierAnswer, User, EMAIL_TEMPLATES,
    COMPANY_STATUS_ACTIVE, COMPANY_STATUS_PENDING, COMPANY_STATUS_REGISTERED,
    INVITE_STATUS_PENDING, INVITE_STATUS_USED, RELATION_ROLES, RELATION_SUPPLIER,
    ROLE_ADMIN, get_now, new_id, reciprocal_role, relation_field
)
from boltstax_portal.schemas import InviteSchema, RedeemSchema, RegisterSchema, validate
from boltstax_portal.services.company_service import CompanyService
from boltstax_portal.services.email_service import EmailService
from boltstax_portal.services.question_service import QuestionService, is_answered
from boltstax_portal.utils import build_url, create_notification, remove_items

logger = logging.getLogger(__name__)


class InvitationService:

    INVITE_EMAIL_TEMPLATES = {
        'supplier': EMAIL_TEMPLATES.supplier_invitation,
        'customer': EMAIL_TEMPLATES.customer_invitation,
    }

    @staticmethod
    def invite_entity(invite, inviting_company_id, role=RELATION_SUPPLIER):
        """
        Invites a supplier or customer company:
        1. Validate input
        2. Insert Invite + placeholder Company and link it to the inviter (one transaction)
        3. Send the invitation email
        4. Compensate (delete both records, unlink) if the email fails
        Returns {'inviteCode', 'targetCompanyId'}.
        """
        if role not in RELATION_ROLES:
            raise ValidationError(f"Invalid invitation role: {role}", field_errors={'role': 'Invalid role'})
        data = validate(InviteSchema, invite)

        invite_code = new_id()
        target_company_id = new_id()
        now = get_now()

        # 1-2. Atomic batch
        try:
            inviting_company = CompanyService.get_company(inviting_company_id, for_update=True)

            db.session.add(Invite(
                code=invite_code,
                inviting_company_id=inviting_company.id,
                target_company_id=target_company_id,
                email=data.primary_contact,
                name=data.name,
                contact_name=data.contact_name,
                role=role,
                tags=list(data.tags),
                notes=data.notes,
                status=INVITE_STATUS_PENDING,
                created_at=now
            ))

            placeholder = Company(
                id=target_company_id,
                name=data.name,
                contact_name=data.contact_name,
                email=data.primary_contact,
                status=COMPANY_STATUS_PENDING,
                notes=data.notes,
                tags=list(data.tags),
                suppliers=[],
                customers=[],
                created_at=now,
                updated_at=now
            )
            # The invitee sees the inviter on the reciprocal side
            setattr(placeholder, relation_field(reciprocal_role(role)), [inviting_company.id])
            db.session.add(placeholder)

            CompanyService.add_relation(inviting_company, target_company_id, role)

            create_notification(
                company_id=inviting_company.id,
                type=f"{role}Invited",
                title=f"{role.capitalize()} invited",
                message=f"{data.name} was invited as a {role}.",
                related_company_id=target_company_id
            )
            db.session.commit()
        except NotFound:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Error creating invite for company %s: %s", inviting_company_id, e)
            raise ServiceError(f"Failed to invite {role}") from e

        # 3. Email
        invite_url = build_url('/signup', invite=invite_code)
        try:
            EmailService.send_email(
                to=data.primary_contact,
                template=InvitationService.INVITE_EMAIL_TEMPLATES[role],
                data={
                    'contactName': data.contact_name,
                    'companyName': data.name,
                    'invitingCompanyName': inviting_company.name,
                    'accessUrl': invite_url
                },
                company_id=inviting_company.id
            )
        except Exception:
            # 4. Compensating batch
            logger.warning("Invitation email failed for invite %s, rolling back", invite_code)
            InvitationService._compensate(invite_code, target_company_id, inviting_company_id, role)
            raise

        return {'inviteCode': invite_code, 'targetCompanyId': target_company_id}

    @staticmethod
    def _compensate(invite_code, target_company_id, inviting_company_id, role):
        try:
            Invite.query.filter_by(code=invite_code).delete(synchronize_session=False)
            Company.query.filter_by(id=target_company_id).delete(synchronize_session=False)
            Notification.query.filter_by(related_company_id=target_company_id).delete(synchronize_session=False)
            inviting_company = Company.query.filter_by(id=inviting_company_id).with_for_update().first()
            if inviting_company:
                field = relation_field(role)
                setattr(inviting_company, field, remove_items(getattr(inviting_company, field), target_company_id))
                inviting_company.updated_at = get_now()
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Cleanup failed for invite %s (company %s): %s", invite_code, target_company_id, e)
            raise ServiceError("Failed to roll back invitation") from e

    @staticmethod
    def get_invite_data(code):
        invite = Invite.query.get(code) if code else None
        if not invite:
            raise NotFound("Invalid invite code")
        return invite

    @staticmethod
    def list_pending_invites(company_id):
        return Invite.query.filter_by(inviting_company_id=company_id, status=INVITE_STATUS_PENDING)\
            .order_by(Invite.created_at.desc()).all()

    @staticmethod
    def redeem_invite(code, payload):
        """
        Consumes an invite at signup. The signup email must match the invited
        address. Creates the user on the placeholder company, stores answers to
        the invite's tagged questions and marks the invite used.
        """
        data = validate(RedeemSchema, payload)
        invite = InvitationService.get_invite_data(code)

        if invite.status == INVITE_STATUS_USED:
            raise InviteAlreadyUsed("Invite has already been used")

        if invite.email.strip().lower() != data.email.strip().lower():
            raise EmailMismatch("Email does not match invitation")

        questions = QuestionService.get_questions_by_tags(invite.tags) if invite.tags else []
        field_errors = {
            q.id: 'This question requires an answer'
            for q in questions
            if q.required and not is_answered(data.answers.get(q.id))
        }
        if field_errors:
            raise ValidationError("Required questions are not answered", field_errors=field_errors)

        company = Company.query.get(invite.target_company_id)
        if not company:
            raise NotFound("Invited company no longer exists")

        now = get_now()
        try:
            user = User(
                name=data.name,
                email=data.email,
                password_hash=generate_password_hash(data.password),
                role=ROLE_ADMIN,
                company_id=company.id
            )
            db.session.add(user)
            db.session.flush()

            company.status = COMPANY_STATUS_REGISTERED
            company.registered_at = now

            question_ids = {q.id for q in questions}
            for question_id, value in data.answers.items():
                if question_id not in question_ids:
                    continue
                db.session.add(SupplierAnswer(
                    company_id=company.id,
                    invite_code=invite.code,
                    question_id=question_id,
                    value=value
                ))

            invite.status = INVITE_STATUS_USED
            invite.used_at = now
            invite.used_by = user.id

            create_notification(
                company_id=invite.inviting_company_id,
                type='supplierJoined',
                title=f"{invite.role.capitalize()} joined",
                message=f"{company.name} accepted the invitation.",
                related_company_id=company.id
            )
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            raise ValidationError("Email already registered", field_errors={'email': 'Email already registered'}) from e
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Error redeeming invite %s: %s", code, e)
            raise ServiceError("Failed to redeem invite") from e

        return user

    @staticmethod
    def register_company(payload):
        """Self-registration without an invite: new active company + its admin."""
        data = validate(RegisterSchema, payload)
        if User.query.filter_by(email=data.email).first():
            raise ValidationError("Email already registered", field_errors={'email': 'Email already registered'})

        try:
            company = Company(
                name=data.company_name or f"{data.name}'s Company",
                contact_name=data.name,
                email=data.email,
                status=COMPANY_STATUS_ACTIVE,
                suppliers=[],
                customers=[],
                tags=[]
            )
            db.session.add(company)
            db.session.flush()

            user = User(
                name=data.name,
                email=data.email,
                password_hash=generate_password_hash(data.password),
                role=ROLE_ADMIN,
                company_id=company.id
            )
            db.session.add(user)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Error registering company for %s: %s", data.email, e)
            raise ServiceError("Failed to register company") from e

        return user
