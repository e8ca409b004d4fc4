"""Deletion manifest: every tenant-scoped table and how its rows are removed.

The manifest is explicit. A table that carries ``tenant_id`` must either own
a step here or be listed as retained; anything else is a startup-fatal
``PlanIntegrityError``. Steps run children before parents so that no step
ever depends on a database-level cascade.
"""

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import ColumnElement, MetaData, Table, delete, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from app.core.database import Base, inspect_live_schema
from app.core.logging import get_logger
from app.utils.exceptions import PlanIntegrityError

logger = get_logger(__name__)

TENANT_COLUMN = "tenant_id"

# Tables the pipeline itself needs after the run, or that must outlive the tenant.
RETAINED_TABLES = frozenset(
    {
        "tenants",
        "tenant_deletion_queue",
        "deletion_approvals",
        "deletion_audit_trail",
        "tenant_deletion_log",
        "legal_holds",
        "alembic_version",
    }
)

Predicate = Callable[[Table, UUID], ColumnElement[bool]]


def tenant_scoped(table: Table, tenant_id: UUID) -> ColumnElement[bool]:
    return table.c[TENANT_COLUMN] == tenant_id


def _referenced_table(target_fullname: str) -> str:
    # "schema.table.column" or "table.column"
    return target_fullname.rsplit(".", 2)[-2]


@dataclass(frozen=True)
class DeletionStep:
    """One table-scoped unit of deletion work."""

    name: str
    table: Table
    predicate: Predicate = tenant_scoped

    @property
    def table_name(self) -> str:
        return self.table.name

    def where(self, tenant_id: UUID) -> ColumnElement[bool]:
        return self.predicate(self.table, tenant_id)

    async def count(self, session: AsyncSession, tenant_id: UUID) -> int:
        """Rows the step would remove right now. Read-only."""
        stmt = select(func.count()).select_from(self.table).where(self.where(tenant_id))
        return int((await session.execute(stmt)).scalar_one())

    async def apply(self, session: AsyncSession, tenant_id: UUID) -> int:
        """
        Delete the tenant's rows and return how many went.

        Delete-if-exists: running it again after success removes nothing and
        returns 0, which is still success.
        """
        result = await session.execute(delete(self.table).where(self.where(tenant_id)))
        return max(result.rowcount or 0, 0)


@dataclass(frozen=True)
class PlannedStep:
    """A step bound to one tenant and its position in the plan."""

    position: int
    step: DeletionStep
    tenant_id: UUID

    @property
    def name(self) -> str:
        return self.step.name

    @property
    def table_name(self) -> str:
        return self.step.table_name

    async def count(self, session: AsyncSession) -> int:
        return await self.step.count(session, self.tenant_id)

    async def apply(self, session: AsyncSession) -> int:
        return await self.step.apply(session, self.tenant_id)


class DeletionPlan:
    """Ordered deletion manifest plus the set of tables it deliberately keeps."""

    def __init__(
        self,
        steps: Sequence[DeletionStep],
        retained_tables: Iterable[str] = RETAINED_TABLES,
        metadata: MetaData | None = None,
    ) -> None:
        self.steps = tuple(steps)
        self.retained_tables = frozenset(retained_tables)
        self.metadata = metadata

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def table_names(self) -> list[str]:
        return [step.table_name for step in self.steps]

    def plan(self, tenant_id: UUID) -> list[PlannedStep]:
        """Steps for one tenant, in execution order."""
        return [
            PlannedStep(position=index, step=step, tenant_id=tenant_id)
            for index, step in enumerate(self.steps)
        ]

    def validate(self, live_tables: Mapping[str, set[str]]) -> None:
        """
        Check the manifest against the live schema.

        Args:
            live_tables: Table name -> column names, as deployed

        Raises:
            PlanIntegrityError: Listing every problem found, not just the first
        """
        problems: list[str] = []

        positions: dict[str, int] = {}
        for index, step in enumerate(self.steps):
            if step.table_name in positions:
                problems.append(f"table '{step.table_name}' has more than one step")
                continue
            positions[step.table_name] = index
        mapped = set(positions)

        for name in sorted(mapped & self.retained_tables):
            problems.append(f"table '{name}' is both deleted and retained")

        for name in sorted(mapped - set(live_tables)):
            problems.append(f"table '{name}' has a step but does not exist")

        for name, columns in sorted(live_tables.items()):
            if TENANT_COLUMN in columns and name not in mapped and name not in self.retained_tables:
                problems.append(f"tenant-scoped table '{name}' has no deletion step")

        for index, step in enumerate(self.steps):
            for fk in step.table.foreign_keys:
                parent = _referenced_table(fk.target_fullname)
                if parent == step.table_name or parent not in positions:
                    continue
                if positions[parent] < index:
                    problems.append(
                        f"table '{parent}' is deleted before its child '{step.table_name}'"
                    )

        if self.metadata is not None:
            for table in self.metadata.sorted_tables:
                if table.name in mapped or table.name in self.retained_tables:
                    continue
                for fk in table.foreign_keys:
                    parent = _referenced_table(fk.target_fullname)
                    if parent in mapped:
                        problems.append(
                            f"table '{table.name}' references '{parent}' but has no deletion step"
                        )

        if problems:
            logger.error("Deletion plan integrity check failed", problems=problems)
            raise PlanIntegrityError("Deletion plan does not match schema: " + "; ".join(problems))

        logger.debug("Deletion plan validated", steps=len(self.steps))

    async def validate_in_session(self, session: AsyncSession) -> None:
        """Validate against the schema visible through ``session``'s connection."""
        conn = await session.connection()
        self.validate(await conn.run_sync(inspect_live_schema))

    async def validate_against_database(self, db_engine: AsyncEngine) -> None:
        async with db_engine.connect() as conn:
            live_tables = await conn.run_sync(inspect_live_schema)
        self.validate(live_tables)


def _shares_of_tenant_documents(table: Table, tenant_id: UUID) -> ColumnElement[bool]:
    documents = table.metadata.tables["documents"]
    return table.c.document_id.in_(
        select(documents.c.id).where(documents.c[TENANT_COLUMN] == tenant_id)
    )


# Children before parents.
DEFAULT_STEP_ORDER: tuple[tuple[str, Predicate], ...] = (
    ("survey_responses", tenant_scoped),
    ("surveys", tenant_scoped),
    ("team_members", tenant_scoped),
    ("calendar_events", tenant_scoped),
    ("document_shares", _shares_of_tenant_documents),
    ("documents", tenant_scoped),
    ("teams", tenant_scoped),
    ("departments", tenant_scoped),
    ("users", tenant_scoped),
)


def build_default_plan() -> DeletionPlan:
    """Manifest for the application's own tables."""
    from app.models import business, deletion, tenant  # noqa: F401

    tables = Base.metadata.tables
    steps = [
        DeletionStep(name=name, table=tables[name], predicate=predicate)
        for name, predicate in DEFAULT_STEP_ORDER
    ]
    return DeletionPlan(steps, RETAINED_TABLES, metadata=Base.metadata)
