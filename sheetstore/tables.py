"""Catalogue of the application tables.

Each entry names the feature whose spreadsheet holds the tab, the tab title,
the canonical columns and, for tables whose entities span several rows, the
group layout.  Column kinds drive the codec: ``DATE`` columns are stored as
``DD/MM/YYYY HH:mm:ss`` text and read back as ISO strings, ``BOOLEAN``
columns as ``TRUE``/``FALSE``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from sheetstore.codec import Record
from sheetstore.groups import GroupLayout, product_field
from sheetstore.schema import Column, ColumnKind, TableSchema

Ordering = Callable[[List[Record]], List[Record]]

TEXT = ColumnKind.TEXT
INTEGER = ColumnKind.INTEGER
BOOLEAN = ColumnKind.BOOLEAN
DATE = ColumnKind.DATE


def _key(name: str) -> Column:
    return Column(name, INTEGER)


def _date(name: str) -> Column:
    return Column(name, DATE)


def _flag(name: str) -> Column:
    return Column(name, BOOLEAN)


def _timestamps() -> Sequence[Column]:
    return (_date("created_at"), _date("updated_at"))


# ----------------------------------------------------------------------
# Orderings
# ----------------------------------------------------------------------
def _sort_text(value: object) -> str:
    return "" if value is None else str(value)


def newest_first(records: List[Record]) -> List[Record]:
    """Descending ``created_at``; rows without one go last."""

    dated = [record for record in records if record.get("created_at")]
    undated = [record for record in records if not record.get("created_at")]
    dated.sort(key=lambda record: _sort_text(record.get("created_at")), reverse=True)
    return dated + undated


def due_date_then_newest(records: List[Record]) -> List[Record]:
    """Ascending ``due_date``, ties broken by descending ``created_at``."""

    ordered = newest_first(records)
    with_due = [record for record in ordered if record.get("due_date")]
    without_due = [record for record in ordered if not record.get("due_date")]
    with_due.sort(key=lambda record: _sort_text(record.get("due_date")))
    return with_due + without_due


def oldest_first(records: List[Record]) -> List[Record]:
    return sorted(records, key=lambda record: _sort_text(record.get("created_at")))


@dataclass(frozen=True)
class TableDefinition:
    name: str
    feature: str
    title: str
    schema: TableSchema
    layout: Optional[GroupLayout] = None
    ordering: Optional[Ordering] = None

    @property
    def grouped(self) -> bool:
        return self.layout is not None

    def order(self, records: List[Record]) -> List[Record]:
        return self.ordering(records) if self.ordering else records


# ----------------------------------------------------------------------
# Schemas
# ----------------------------------------------------------------------
DELEGATION = TableSchema.of(
    _key("id"),
    _key("user_id"),
    "delegation_name",
    "description",
    "assigned_to",
    "doer_name",
    "department",
    "priority",
    _date("due_date"),
    "status",
    "voice_note_url",
    "reference_docs",
    _flag("evidence_required"),
    *_timestamps(),
)

DELEGATION_REMARKS = TableSchema.of(
    _key("id"),
    _key("delegation_id"),
    _key("user_id"),
    "username",
    "remark",
    _date("created_at"),
)

DELEGATION_HISTORY = TableSchema.of(
    _key("id"),
    _key("delegation_id"),
    "old_status",
    "new_status",
    _date("old_due_date"),
    _date("new_due_date"),
    "reason",
    _date("created_at"),
)

USERS = TableSchema.of(
    _key("id"),
    "username",
    "email",
    "password",
    "phone",
    _key("role_id"),
    "image_url",
    _date("created_at"),
)

DEPARTMENTS = TableSchema.of(_key("id"), "name", "description", _date("created_at"))

TODOS = TableSchema.of(
    _key("id"),
    "title",
    "description",
    "priority",
    "status",
    "category",
    _flag("is_important"),
    "assigned_to",
    _key("user_id"),
    _date("due_date"),
    *_timestamps(),
)

HELPDESK_TICKETS = TableSchema.of(
    _key("id"),
    "ticket_number",
    _key("raised_by"),
    "raised_by_name",
    "category",
    "priority",
    "subject",
    "description",
    _key("assigned_to"),
    "assigned_to_name",
    _key("accountable_person"),
    "accountable_person_name",
    _date("desired_date"),
    "status",
    "attachments",
    "remarks",
    *_timestamps(),
    _date("resolved_at"),
)

HELPDESK_REMARKS = TableSchema.of(
    _key("id"),
    _key("ticket_id"),
    _key("user_id"),
    "user_name",
    "remark",
    _date("created_at"),
)

CHECKLISTS = TableSchema.of(
    _key("id"),
    "question",
    "assignee",
    "doer_name",
    "priority",
    "department",
    _flag("verification_required"),
    "verifier_name",
    _flag("attachment_required"),
    "frequency",
    _date("due_date"),
    "status",
    _key("group_id"),
    "created_by",
    *_timestamps(),
)

CHAT_MESSAGES = TableSchema.of(
    _key("id"),
    _key("sender_id"),
    "sender_name",
    _key("receiver_id"),
    "message",
    "message_type",
    "attachment_url",
    "attachment_type",
    _key("duration_ms"),
    _date("created_at"),
)

NOTIFICATIONS = TableSchema.of(
    _key("id"),
    _key("user_id"),
    "user_role",
    "type",
    "title",
    "message",
    "resource_id",
    "target_page",
    "action_by",
    _flag("is_read"),
    _date("created_at"),
)

O2D_SHARED = (
    "party_name",
    "type",
    "contact_person",
    "email",
    "contact_no_1",
    "contact_no_2",
    "location",
    "state",
    "field_person_name",
)

O2D_STEP_FIELDS = {
    1: ("Destination",),
    2: ("Stock Availability",),
    3: ("Production Status",),
    4: ("Information Status",),
    5: ("Status_5",),
    6: ("Dispatch Status",),
    7: ("Bill No.", "Revenue", "Item Cost", "Total Cost"),
    8: ("Status_8",),
}


def _o2d_columns() -> List[Column | str]:
    columns: List[Column | str] = [_key("id"), _key("party_id"), *O2D_SHARED, "item", "qty", "status"]
    for step, fields in O2D_STEP_FIELDS.items():
        columns.extend([_date(f"Planned_{step}"), _date(f"Actual_{step}"), *fields])
    columns.extend(["Cancelled", *_timestamps()])
    return columns


O2D = TableSchema.of(*_o2d_columns())

O2D_LAYOUT = GroupLayout(
    group_column="party_id",
    shared_columns=O2D_SHARED,
    line_columns=("item", "qty"),
    derived=(product_field("Total Cost", "Item Cost", "qty"),),
)

CHECKLIST_LAYOUT = GroupLayout(
    group_column="group_id",
    shared_columns=(
        "question",
        "assignee",
        "doer_name",
        "priority",
        "department",
        "verification_required",
        "verifier_name",
        "attachment_required",
        "frequency",
        "created_by",
    ),
    line_columns=("due_date",),
)


TABLES: Dict[str, TableDefinition] = {
    definition.name: definition
    for definition in (
        TableDefinition("delegation", "delegation", "delegation", DELEGATION, ordering=newest_first),
        TableDefinition("delegation_remarks", "delegation", "delegation_remarks", DELEGATION_REMARKS, ordering=oldest_first),
        TableDefinition(
            "delegation_revision_history",
            "delegation",
            "delegation_revision_history",
            DELEGATION_HISTORY,
            ordering=newest_first,
        ),
        TableDefinition("users", "users", "users", USERS),
        TableDefinition("departments", "users", "departments", DEPARTMENTS),
        TableDefinition("notifications", "users", "notifications", NOTIFICATIONS, ordering=newest_first),
        TableDefinition("todos", "todos", "todos", TODOS, ordering=newest_first),
        TableDefinition("helpdesk", "helpdesk", "helpdesk", HELPDESK_TICKETS, ordering=newest_first),
        TableDefinition("helpdesk_remarks", "helpdesk", "helpdesk_remarks", HELPDESK_REMARKS, ordering=oldest_first),
        TableDefinition(
            "checklists",
            "checklists",
            "checklists",
            CHECKLISTS,
            layout=CHECKLIST_LAYOUT,
            ordering=due_date_then_newest,
        ),
        TableDefinition("chat", "chat", "chat", CHAT_MESSAGES, ordering=oldest_first),
        TableDefinition("o2d", "o2d", "O2D", O2D, layout=O2D_LAYOUT, ordering=newest_first),
    )
}


def get_table(name: str) -> TableDefinition:
    try:
        return TABLES[name]
    except KeyError:
        known = ", ".join(sorted(TABLES))
        raise KeyError(f"Unknown table {name!r}; known tables: {known}") from None


__all__ = [
    "CHECKLIST_LAYOUT",
    "O2D_LAYOUT",
    "TABLES",
    "TableDefinition",
    "due_date_then_newest",
    "get_table",
    "newest_first",
    "oldest_first",
]
