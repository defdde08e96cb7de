"""Migration planner: diffs two schema versions into an ordered plan.

Classification per table present in both versions:

    in place   added columns (nullable or defaulted, unconstrained),
               added / dropped / redefined indexes
    rebuild    dropped, renamed, retyped or redefined columns, reordered
               columns, any constraint change, or an added column the
               engine cannot append with ALTER TABLE

A table needing a rebuild collapses into one RebuildTable step; the rebuild
recreates every index of the new descriptor, so the table's in-place steps
are dropped.

Index names share one namespace across the store, so every index name the
new version gives up or moves to another table is released first. Names
held by a table that is rebuilt or dropped get an explicit DropIndex ahead
of the step that would otherwise free them too late.

Emission order:

    DropIndex (by table, then index name)
    CreateTable (dependency order)
    in-place steps, by table name (AddColumn, AddIndex)
    RebuildTable (dependency order; a cycle fails planning)
    DropTable (reverse dependency order)
"""

from __future__ import annotations

from dataclasses import replace

from migration_engine.domain.entities import (
    AddColumn,
    AddIndex,
    ColumnProjection,
    CreateTable,
    DropIndex,
    DropTable,
    MigrationPlan,
    MigrationStep,
    RebuildTable,
    SchemaVersion,
    TableDescriptor,
)
from migration_engine.domain.exceptions import ValidationError
from migration_engine.domain.services.dependency_graph import topological_order
from migration_engine.domain.value_objects import StepId, StepKey
from migration_engine.infrastructure.logging import get_logger

logger = get_logger(__name__)

_UNASSIGNED = StepId("")


class MigrationPlanner:
    """Computes the steps that transform one schema version into the next.

    The planner is pure: it reads two SchemaVersion values and returns a
    MigrationPlan. It never touches the store.

    Example:
        planner = MigrationPlanner()
        plan = planner.plan(v1, v2)
        for step in plan:
            print(step.step_id, step.describe())
    """

    def plan(self, old: SchemaVersion, new: SchemaVersion) -> MigrationPlan:
        """Diff ``old`` against ``new``.

        Raises:
            ValidationError: If ``new`` does not have a higher version.
            CyclicDependencyError: If tables that need a rebuild reference
                each other in a cycle. No plan is produced.
        """
        if new.version <= old.version:
            raise ValidationError(
                f"Target version {new.version} must be greater than source version {old.version}"
            )

        old_names = set(old.table_names)
        new_names = set(new.table_names)

        created = [t for t in new if t.name not in old_names]
        dropped = [t for t in old if t.name not in new_names]
        released: list[DropIndex] = []
        in_place: list[MigrationStep] = []
        rebuilds: dict[str, RebuildTable] = {}

        for table in new:
            previous = old.table(table.name)
            if previous is None:
                continue
            if needs_rebuild(previous, table):
                rebuilds[table.name] = RebuildTable(
                    _UNASSIGNED,
                    table.name,
                    old=previous,
                    new=table,
                    projection=ColumnProjection.between(previous, table),
                )
            else:
                for step in in_place_steps(previous, table):
                    if isinstance(step, DropIndex):
                        released.append(step)
                    else:
                        in_place.append(step)
        released.extend(moved_index_drops(old, new, {s.index_name for s in released}))

        steps: list[MigrationStep] = []
        steps.extend(sorted(released, key=lambda s: (s.table, s.index_name)))

        create_order = topological_order(
            [t.name for t in created],
            {t.name: t.references() for t in created},
            strict=False,
        )
        by_name = {t.name: t for t in created}
        steps.extend(
            CreateTable(_UNASSIGNED, name, descriptor=by_name[name]) for name in create_order
        )

        steps.extend(in_place)

        rebuild_order = topological_order(
            rebuilds,
            {name: step.new.references() for name, step in rebuilds.items()},
            strict=True,
        )
        steps.extend(rebuilds[name] for name in rebuild_order)

        drop_order = topological_order(
            [t.name for t in dropped],
            {t.name: t.references() for t in dropped},
            strict=False,
        )
        by_name = {t.name: t for t in dropped}
        steps.extend(
            DropTable(_UNASSIGNED, name, descriptor=by_name[name])
            for name in reversed(drop_order)
        )

        numbered = tuple(
            replace(step, step_id=StepKey(new.version, position, step.kind.value, step.table).step_id)
            for position, step in enumerate(steps)
        )

        logger.info(
            "migration_planned",
            source_version=old.version,
            target_version=new.version,
            steps=len(numbered),
            created=len(created),
            rebuilt=len(rebuilds),
            dropped=len(dropped),
        )
        return MigrationPlan(old.version, new.version, numbered)


def needs_rebuild(old: TableDescriptor, new: TableDescriptor) -> bool:
    """Return True if ``old`` cannot become ``new`` with in-place statements."""
    if old.constraints != new.constraints:
        return True

    # Existing columns must survive unchanged, in order, as a prefix of the
    # new column list; anything else means a drop, rename or reorder.
    kept = new.columns[: len(old.columns)]
    if tuple(c.name for c in kept) != old.column_names:
        return True
    for before, after in zip(old.columns, kept):
        if after.renamed_from not in (None, after.name):
            return True
        if not before.same_definition(after):
            return True

    constrained = new.constrained_columns()
    for column in new.columns[len(old.columns):]:
        if column.renamed_from is not None and old.column(column.renamed_from) is not None:
            return True
        if not column.nullable and not column.has_default:
            return True
        if column.name in constrained:
            return True
    return False


def in_place_steps(old: TableDescriptor, new: TableDescriptor) -> list[MigrationStep]:
    """Return the in-place steps for a table that needs no rebuild."""
    steps: list[MigrationStep] = []
    old_indexes = {i.name: i for i in old.indexes}
    new_indexes = {i.name: i for i in new.indexes}

    for name in sorted(old_indexes):
        if new_indexes.get(name) != old_indexes[name]:
            steps.append(DropIndex(_UNASSIGNED, new.name, index_name=name))

    for column in new.columns[len(old.columns):]:
        steps.append(AddColumn(_UNASSIGNED, new.name, column=column))

    for name in sorted(new_indexes):
        if old_indexes.get(name) != new_indexes[name]:
            steps.append(AddIndex(_UNASSIGNED, new.name, index=new_indexes[name]))

    return steps


def moved_index_drops(
    old: SchemaVersion, new: SchemaVersion, already_dropped: set[str]
) -> list[DropIndex]:
    """Drop old indexes whose name the new version assigns to another table.

    Tables kept in place already drop such indexes; this covers tables that
    are rebuilt or dropped, whose indexes would otherwise only disappear
    with the table itself.
    """
    claimed = {index.name: table.name for table in new for index in table.indexes}
    drops: list[DropIndex] = []
    for table in old:
        for index in sorted(table.indexes, key=lambda i: i.name):
            owner = claimed.get(index.name)
            if owner is None or owner == table.name or index.name in already_dropped:
                continue
            drops.append(DropIndex(_UNASSIGNED, table.name, index_name=index.name))
    return drops
