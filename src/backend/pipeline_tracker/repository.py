from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Index,
    MetaData,
    String,
    Table,
    Text,
    and_,
    case,
    create_engine,
    delete,
    func,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Engine, Row
from sqlalchemy.sql.dml import Update
from sqlalchemy.sql.elements import ColumnElement

from .bucketing import aggregate_records, validate_group_spec
from .config import PipelineConfig
from .errors import StoreError, StoreTimeout, ValidationError
from .models import SORTABLE_FIELDS, Application, ApplicationQuery, ApplicationStatus, Page, PageResult

logger = logging.getLogger(__name__)

PATCHABLE_FIELDS = ("candidate_name", "role", "years_of_experience", "resume_link", "notes", "status")
_TIMEOUT_MARKERS = ("timeout", "timed out", "canceling statement", "database is locked")


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ApplicationRepository:
    """
    Owner-scoped access to application records.

    Every method takes the caller's ``owner_id`` explicitly; implementations
    must never return or modify another owner's rows. Mutations return
    ``None``/``False`` when nothing matched ``(id, owner_id)``.
    """

    def find(self, owner_id: str, query: ApplicationQuery, page: Page) -> PageResult:
        raise NotImplementedError

    def count(self, owner_id: str, query: Optional[ApplicationQuery] = None) -> int:
        raise NotImplementedError

    def load(self, owner_id: str, query: Optional[ApplicationQuery] = None) -> Sequence[Application]:
        raise NotImplementedError

    def aggregate(
        self,
        owner_id: str,
        group_field: Optional[str],
        metrics: Sequence[str] = ("count",),
        query: Optional[ApplicationQuery] = None,
    ) -> List[Dict[str, Any]]:
        return aggregate_records(self.load(owner_id, query), group_field, metrics)

    def get(self, owner_id: str, application_id: str) -> Optional[Application]:
        raise NotImplementedError

    def insert(self, application: Application) -> Application:
        raise NotImplementedError

    def set_status(
        self, owner_id: str, application_id: str, status: ApplicationStatus, at: datetime
    ) -> Optional[Application]:
        raise NotImplementedError

    def patch(
        self, owner_id: str, application_id: str, changes: Mapping[str, Any], at: datetime
    ) -> Optional[Application]:
        raise NotImplementedError

    def delete(self, owner_id: str, application_id: str) -> bool:
        raise NotImplementedError


def build_applications_table(metadata: MetaData, table_name: str = "applications") -> Table:
    return Table(
        table_name,
        metadata,
        Column("id", String(32), primary_key=True),
        Column("owner_id", String(128), nullable=False, index=True),
        Column("candidate_name", String(255), nullable=False),
        Column("role", String(255), nullable=False),
        Column("years_of_experience", Float, nullable=False),
        Column("resume_link", String(2048), nullable=False, default=""),
        Column("status", String(16), nullable=False, default=ApplicationStatus.APPLIED.value),
        Column("notes", Text, nullable=False, default=""),
        Column("created_at", DateTime(timezone=True), nullable=False),
        Column("last_updated", DateTime(timezone=True), nullable=False),
        Column("updated_at", DateTime(timezone=True), nullable=False),
        Index(f"ix_{table_name}_owner_status_role", "owner_id", "status", "role"),
        Index(f"ix_{table_name}_owner_created", "owner_id", "created_at"),
    )


class SQLApplicationRepository(ApplicationRepository):
    """
    Store adapter over a single ``applications`` table.

    Status transitions and patches are one ``UPDATE ... WHERE id AND owner``
    statement each, so concurrent writers serialize in the database rather
    than racing through a read-modify-write.
    """

    def __init__(self, engine: Engine, table_name: str = "applications", create_tables: bool = True):
        self.engine = engine
        self.metadata = MetaData()
        self.table = build_applications_table(self.metadata, table_name)
        if create_tables:
            with self._store_errors("create_tables", owner_id=None):
                self.metadata.create_all(self.engine, checkfirst=True)

    # -- reads -----------------------------------------------------------

    def find(self, owner_id: str, query: ApplicationQuery, page: Page) -> PageResult:
        column_name = SORTABLE_FIELDS.get(page.sort_by)
        if column_name is None:
            raise ValidationError.for_field("sortBy", f"cannot sort by {page.sort_by!r}")
        sort_column = self.table.c[column_name]
        order = sort_column.desc() if page.descending else sort_column.asc()
        conditions = self._conditions(owner_id, query)
        stmt = (
            select(self.table)
            .where(*conditions)
            .order_by(order, self.table.c.id.asc())
            .offset(page.skip)
            .limit(page.size)
        )
        count_stmt = select(func.count()).select_from(self.table).where(*conditions)
        with self._store_errors("find", owner_id, sort_by=page.sort_by, page=page.number):
            with self.engine.connect() as connection:
                rows = connection.execute(stmt).fetchall()
                total = connection.execute(count_stmt).scalar_one()
        return PageResult(items=tuple(self._row_to_application(row) for row in rows), total=int(total), page=page)

    def count(self, owner_id: str, query: Optional[ApplicationQuery] = None) -> int:
        stmt = select(func.count()).select_from(self.table).where(*self._conditions(owner_id, query))
        with self._store_errors("count", owner_id):
            with self.engine.connect() as connection:
                return int(connection.execute(stmt).scalar_one())

    def load(self, owner_id: str, query: Optional[ApplicationQuery] = None) -> Sequence[Application]:
        stmt = (
            select(self.table)
            .where(*self._conditions(owner_id, query))
            .order_by(self.table.c.created_at.asc(), self.table.c.id.asc())
        )
        with self._store_errors("load", owner_id):
            with self.engine.connect() as connection:
                rows = connection.execute(stmt).fetchall()
        return tuple(self._row_to_application(row) for row in rows)

    def aggregate(
        self,
        owner_id: str,
        group_field: Optional[str],
        metrics: Sequence[str] = ("count",),
        query: Optional[ApplicationQuery] = None,
    ) -> List[Dict[str, Any]]:
        validate_group_spec(group_field, metrics)
        experience = self.table.c.years_of_experience
        metric_columns = {
            "count": func.count().label("count"),
            "avg_experience": func.avg(experience).label("avg_experience"),
            "min_experience": func.min(experience).label("min_experience"),
            "max_experience": func.max(experience).label("max_experience"),
        }
        selected = [metric_columns[metric] for metric in metrics]
        if group_field:
            key_column = self.table.c[group_field]
            stmt = select(key_column.label("key"), *selected).group_by(key_column)
        else:
            stmt = select(*selected, func.count().label("_rows"))
        stmt = stmt.where(*self._conditions(owner_id, query))

        with self._store_errors("aggregate", owner_id, group_field=group_field, metrics=list(metrics)):
            with self.engine.connect() as connection:
                rows = connection.execute(stmt).mappings().fetchall()

        result: List[Dict[str, Any]] = []
        for row in rows:
            # An ungrouped aggregate over no rows still yields one row of NULLs.
            if not group_field and not row["_rows"]:
                continue
            item: Dict[str, Any] = {"key": row["key"] if group_field else None}
            for metric in metrics:
                value = row[metric]
                item[metric] = int(value) if metric == "count" else float(value or 0.0)
            result.append(item)
        return result

    def get(self, owner_id: str, application_id: str) -> Optional[Application]:
        stmt = select(self.table).where(self._owned(owner_id, application_id))
        with self._store_errors("get", owner_id, application_id=application_id):
            with self.engine.connect() as connection:
                row = connection.execute(stmt).first()
        return self._row_to_application(row) if row is not None else None

    # -- writes ----------------------------------------------------------

    def insert(self, application: Application) -> Application:
        values = {
            "id": application.id,
            "owner_id": application.owner_id,
            "candidate_name": application.candidate_name,
            "role": application.role,
            "years_of_experience": float(application.years_of_experience),
            "resume_link": application.resume_link,
            "status": application.status.value,
            "notes": application.notes,
            "created_at": as_utc(application.created_at),
            "last_updated": as_utc(application.last_updated),
            "updated_at": as_utc(application.updated_at),
        }
        with self._store_errors("insert", application.owner_id, application_id=application.id):
            with self.engine.begin() as connection:
                connection.execute(insert(self.table).values(**values))
        return application

    def set_status(
        self, owner_id: str, application_id: str, status: ApplicationStatus, at: datetime
    ) -> Optional[Application]:
        now = as_utc(at)
        values = {
            "status": status.value,
            "last_updated": self._not_before(self.table.c.last_updated, now),
            "updated_at": now,
        }
        return self._update_one("set_status", owner_id, application_id, values)

    def patch(
        self, owner_id: str, application_id: str, changes: Mapping[str, Any], at: datetime
    ) -> Optional[Application]:
        unknown = set(changes) - set(PATCHABLE_FIELDS)
        if unknown:
            raise ValidationError(errors=[{"field": name, "message": "field cannot be updated"} for name in sorted(unknown)])
        values = self.patch_values(changes, as_utc(at))
        return self._update_one("patch", owner_id, application_id, values, fields=sorted(changes))

    def patch_values(self, changes: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
        """
        SET clauses for a sparse patch, in the order they are rendered.

        ``last_updated`` compares against the stored status, so it is assigned
        before ``status``; MySQL evaluates SET assignments left to right.
        """

        values: Dict[str, Any] = {}
        if "status" in changes:
            status = ApplicationStatus(changes["status"])
            values["last_updated"] = case(
                (self.table.c.status != status.value, self._not_before(self.table.c.last_updated, now)),
                else_=self.table.c.last_updated,
            )
            values["status"] = status.value
        values.update((key, value) for key, value in changes.items() if key != "status")
        values["updated_at"] = now
        return values

    def update_statement(self, owner_id: str, application_id: str, values: Mapping[str, Any]) -> Update:
        pairs = [(self.table.c[key], value) for key, value in values.items()]
        return update(self.table).where(self._owned(owner_id, application_id)).ordered_values(*pairs)

    def delete(self, owner_id: str, application_id: str) -> bool:
        stmt = delete(self.table).where(self._owned(owner_id, application_id))
        with self._store_errors("delete", owner_id, application_id=application_id):
            with self.engine.begin() as connection:
                result = connection.execute(stmt)
        return result.rowcount > 0

    # -- helpers ---------------------------------------------------------

    def _update_one(
        self,
        operation: str,
        owner_id: str,
        application_id: str,
        values: Dict[str, Any],
        **details: Any,
    ) -> Optional[Application]:
        where = self._owned(owner_id, application_id)
        stmt = self.update_statement(owner_id, application_id, values)
        with self._store_errors(operation, owner_id, application_id=application_id, **details):
            with self.engine.begin() as connection:
                if self.engine.dialect.update_returning:
                    row = connection.execute(stmt.returning(*self.table.c)).first()
                else:
                    result = connection.execute(stmt)
                    if result.rowcount == 0:
                        return None
                    row = connection.execute(select(self.table).where(where)).first()
        return self._row_to_application(row) if row is not None else None

    def _owned(self, owner_id: str, application_id: str) -> ColumnElement[bool]:
        return and_(self.table.c.id == application_id, self.table.c.owner_id == owner_id)

    @staticmethod
    def _not_before(column: Any, now: datetime) -> Any:
        return case((column > now, column), else_=now)

    def _conditions(self, owner_id: str, query: Optional[ApplicationQuery]) -> List[ColumnElement[bool]]:
        table = self.table
        conditions: List[ColumnElement[bool]] = [table.c.owner_id == owner_id]
        if query is None:
            return conditions
        if query.status is not None:
            conditions.append(table.c.status == ApplicationStatus(query.status).value)
        if query.role:
            conditions.append(table.c.role.icontains(query.role, autoescape=True))
        if query.experience_min is not None:
            conditions.append(table.c.years_of_experience >= query.experience_min)
        if query.search:
            conditions.append(
                or_(
                    table.c.candidate_name.icontains(query.search, autoescape=True),
                    table.c.role.icontains(query.search, autoescape=True),
                    table.c.notes.icontains(query.search, autoescape=True),
                )
            )
        if query.created_from is not None:
            conditions.append(table.c.created_at >= as_utc(query.created_from))
        if query.created_to is not None:
            conditions.append(table.c.created_at <= as_utc(query.created_to))
        return conditions

    @contextmanager
    def _store_errors(self, operation: str, owner_id: Optional[str], **details: Any) -> Iterator[None]:
        try:
            yield
        except sa_exc.TimeoutError as exc:
            logger.error("Store timeout during %s (owner=%s, %s): %s", operation, owner_id, details, exc)
            raise StoreTimeout() from exc
        except sa_exc.SQLAlchemyError as exc:
            if _looks_like_timeout(exc):
                logger.error("Store timeout during %s (owner=%s, %s): %s", operation, owner_id, details, exc)
                raise StoreTimeout() from exc
            logger.error("Store failure during %s (owner=%s, %s): %s", operation, owner_id, details, exc)
            raise StoreError() from exc

    @staticmethod
    def _row_to_application(row: Row) -> Application:
        return Application(
            id=str(row.id),
            owner_id=str(row.owner_id),
            candidate_name=row.candidate_name,
            role=row.role,
            years_of_experience=float(row.years_of_experience),
            resume_link=row.resume_link or "",
            status=ApplicationStatus(row.status),
            notes=row.notes or "",
            created_at=as_utc(row.created_at),
            last_updated=as_utc(row.last_updated),
            updated_at=as_utc(row.updated_at),
        )


def _looks_like_timeout(exc: sa_exc.SQLAlchemyError) -> bool:
    if not isinstance(exc, sa_exc.OperationalError):
        return False
    message = str(getattr(exc, "orig", exc)).lower()
    return any(marker in message for marker in _TIMEOUT_MARKERS)


def create_pipeline_engine(config: PipelineConfig) -> Engine:
    url = config.database_url
    timeout = config.query_timeout_seconds
    if url.startswith("sqlite"):
        return create_engine(
            url,
            echo=config.echo_sql,
            connect_args={"check_same_thread": False, "timeout": timeout},
        )
    connect_args: Dict[str, Any] = {}
    if url.startswith("postgresql"):
        connect_args["options"] = f"-c statement_timeout={int(timeout * 1000)}"
    return create_engine(
        url,
        echo=config.echo_sql,
        pool_timeout=timeout,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def build_repository(config: PipelineConfig) -> SQLApplicationRepository:
    return SQLApplicationRepository(create_pipeline_engine(config))
