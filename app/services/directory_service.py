from __future__ import annotations

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.domain.errors import ConflictError, NotFoundError
from app.domain.models import (
    QuestionDefinition,
    QuestionDefinitionCreate,
    Site,
    SiteCreate,
    StaffMember,
    StaffMemberCreate,
)
from app.infra.db import get_engine


class DirectoryService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_scoped_site(self, session: Session, tenant_id: str, site_id: str) -> Site:
        site = session.exec(
            select(Site)
            .where(Site.tenant_id == tenant_id)
            .where(Site.id == site_id)
        ).first()
        if site is None:
            raise NotFoundError("site not found")
        return site

    def _get_scoped_staff(self, session: Session, tenant_id: str, staff_id: str) -> StaffMember:
        member = session.exec(
            select(StaffMember)
            .where(StaffMember.tenant_id == tenant_id)
            .where(StaffMember.id == staff_id)
        ).first()
        if member is None:
            raise NotFoundError("staff member not found")
        return member

    def create_site(self, tenant_id: str, payload: SiteCreate) -> Site:
        site = Site(tenant_id=tenant_id, **payload.model_dump())
        with self._session() as session:
            session.add(site)
            session.commit()
            session.refresh(site)
            return site

    def list_sites(self, tenant_id: str, category: str | None = None) -> list[Site]:
        with self._session() as session:
            statement = select(Site).where(Site.tenant_id == tenant_id)
            if category is not None:
                statement = statement.where(Site.category == category)
            return list(session.exec(statement.order_by(col(Site.name))).all())

    def get_site(self, tenant_id: str, site_id: str) -> Site:
        with self._session() as session:
            return self._get_scoped_site(session, tenant_id, site_id)

    def create_staff(self, tenant_id: str, payload: StaffMemberCreate) -> StaffMember:
        member = StaffMember(tenant_id=tenant_id, **payload.model_dump())
        with self._session() as session:
            session.add(member)
            session.commit()
            session.refresh(member)
            return member

    def list_staff(
        self,
        tenant_id: str,
        role: str | None = None,
        category: str | None = None,
    ) -> list[StaffMember]:
        with self._session() as session:
            statement = select(StaffMember).where(StaffMember.tenant_id == tenant_id)
            if role is not None:
                statement = statement.where(StaffMember.role == role)
            if category is not None:
                statement = statement.where(StaffMember.category == category)
            return list(session.exec(statement.order_by(col(StaffMember.name))).all())

    def get_staff(self, tenant_id: str, staff_id: str) -> StaffMember:
        with self._session() as session:
            return self._get_scoped_staff(session, tenant_id, staff_id)

    def create_question(self, tenant_id: str, payload: QuestionDefinitionCreate) -> QuestionDefinition:
        question = QuestionDefinition(tenant_id=tenant_id, **payload.model_dump())
        with self._session() as session:
            session.add(question)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError(
                    f"question already registered: {payload.category}/{payload.key}"
                ) from exc
            session.refresh(question)
            return question

    def list_questions(self, tenant_id: str, category: str | None = None) -> list[QuestionDefinition]:
        with self._session() as session:
            statement = select(QuestionDefinition).where(QuestionDefinition.tenant_id == tenant_id)
            if category is not None:
                statement = statement.where(QuestionDefinition.category == category)
            statement = statement.order_by(col(QuestionDefinition.sort_order), col(QuestionDefinition.key))
            return list(session.exec(statement).all())
