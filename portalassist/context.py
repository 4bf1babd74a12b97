"""
Page context pushed by the embedding portal.

The host page posts envelopes of the form
    {"type": "CONTEXT_UPDATE", "context": {...}}
whenever the user navigates or opens a modal, starts editing, switches a tab
or moves through a form. ContextChannel validates the sender's origin against
an allow-list, keeps the latest snapshot (replaced wholesale, never merged)
and renders it into the natural-language block that rides along with each run
as additional instructions.

If nothing has been pushed yet, a `source` query parameter can seed a
route-only snapshot.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

CONTEXT_UPDATE = "CONTEXT_UPDATE"

ORIGIN_ERROR = "Unable to connect to the portal. Invalid origin."

EMBEDDED_ORIGIN_ADVISORY = (
    "It seems that I am unable to view the page right now. "
    "Please try later or contact DTA Support team."
)

NO_CONTEXT = "User context not available."


def _pick(data: dict, *keys, default=None):
    """First present key. The host sends camelCase, Python callers snake_case."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _pairs(data: dict | None) -> list[tuple[str, Any]]:
    return [(k, v) for k, v in (data or {}).items() if v is not None]


@dataclass
class ModalContext:
    type: str
    title: str = ""
    entity_type: str = ""
    entity_id: str = ""
    entity_name: str = ""
    data: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict) -> "ModalContext":
        return cls(
            type=str(d.get("type", "")),
            title=d.get("title") or "",
            entity_type=_pick(d, "entityType", "entity_type", default=""),
            entity_id=str(_pick(d, "entityId", "entity_id", default="")),
            entity_name=_pick(d, "entityName", "entity_name", default=""),
            data=d.get("data") or {},
        )


@dataclass
class EditContext:
    is_editing: bool = False
    entity_type: str = ""
    entity_id: str = ""
    entity_name: str = ""
    fields: list[str] = field(default_factory=list)
    original_data: dict | None = None

    @classmethod
    def from_dict(cls, d: dict) -> "EditContext":
        return cls(
            is_editing=bool(_pick(d, "isEditing", "is_editing", default=False)),
            entity_type=_pick(d, "entityType", "entity_type", default=""),
            entity_id=str(_pick(d, "entityId", "entity_id", default="")),
            entity_name=_pick(d, "entityName", "entity_name", default=""),
            fields=list(d.get("fields") or []),
            original_data=_pick(d, "originalData", "original_data"),
        )


@dataclass
class TabContext:
    active_tab: str
    tab_group: str = ""
    available_tabs: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: dict) -> "TabContext":
        return cls(
            active_tab=_pick(d, "activeTab", "active_tab", default=""),
            tab_group=_pick(d, "tabGroup", "tab_group", default=""),
            available_tabs=list(_pick(d, "availableTabs", "available_tabs", default=[])),
        )


@dataclass
class FormContext:
    form_name: str
    current_step: int | None = None
    total_steps: int | None = None
    completed_fields: list[str] = field(default_factory=list)
    pending_fields: list[str] = field(default_factory=list)
    validation_errors: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: dict) -> "FormContext":
        return cls(
            form_name=_pick(d, "formName", "form_name", default=""),
            current_step=_pick(d, "currentStep", "current_step"),
            total_steps=_pick(d, "totalSteps", "total_steps"),
            completed_fields=list(_pick(d, "completedFields", "completed_fields", default=[])),
            pending_fields=list(_pick(d, "pendingFields", "pending_fields", default=[])),
            validation_errors=list(_pick(d, "validationErrors", "validation_errors", default=[])),
        )


@dataclass
class PageContext:
    """Snapshot of what the host page is showing the user."""
    route: str
    timestamp: float = field(default_factory=lambda: time.time() * 1000)
    change_type: str = ""
    modal: ModalContext | None = None
    edit: EditContext | None = None
    tab: TabContext | None = None
    form: FormContext | None = None
    custom: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict) -> "PageContext":
        if not isinstance(d, dict) or not d.get("route"):
            raise ValueError("page context requires a route")

        def sub(key, factory):
            value = d.get(key)
            return factory(value) if isinstance(value, dict) else None

        return cls(
            route=str(d["route"]),
            timestamp=d.get("timestamp") or time.time() * 1000,
            change_type=_pick(d, "changeType", "change_type", default=""),
            modal=sub("modal", ModalContext.from_dict),
            edit=sub("edit", EditContext.from_dict),
            tab=sub("tab", TabContext.from_dict),
            form=sub("form", FormContext.from_dict),
            custom=d.get("custom") or {},
        )


def describe(ctx: PageContext | None) -> str:
    """Render a snapshot into the instruction block the model reads."""
    if ctx is None:
        return NO_CONTEXT

    parts = [f"Current page: {ctx.route}"]

    if ctx.modal:
        modal = ctx.modal
        desc = f"\nModal open: {modal.type}"
        if modal.title:
            desc += f' - "{modal.title}"'
        if modal.entity_type and modal.entity_id:
            desc += f"\nViewing {modal.entity_type}: {modal.entity_name or modal.entity_id}"
        pairs = _pairs(modal.data)
        if modal.data:
            desc += "\nModal data:"
            for key, value in pairs:
                desc += f"\n  - {key}: {value}"
        parts.append(desc)

    if ctx.edit and ctx.edit.is_editing:
        edit = ctx.edit
        desc = f"\nEdit mode active: Editing {edit.entity_type}"
        if edit.entity_name:
            desc += f' "{edit.entity_name}"'
        else:
            desc += f" (ID: {edit.entity_id})"
        if edit.fields:
            desc += f"\nEditable fields: {', '.join(edit.fields)}"
        if edit.original_data is not None:
            desc += "\nOriginal values:"
            for key, value in _pairs(edit.original_data):
                desc += f"\n  - {key}: {value}"
        parts.append(desc)

    if ctx.tab:
        tab = ctx.tab
        desc = f'\nActive tab: "{tab.active_tab}" in {tab.tab_group}'
        if tab.available_tabs:
            desc += f"\nAvailable tabs: {', '.join(tab.available_tabs)}"
        parts.append(desc)

    if ctx.form:
        form = ctx.form
        desc = f"\nForm: {form.form_name}"
        if form.current_step and form.total_steps:
            desc += f" (Step {form.current_step} of {form.total_steps})"
        if form.completed_fields:
            desc += f"\nCompleted: {', '.join(form.completed_fields)}"
        if form.pending_fields:
            desc += f"\nPending: {', '.join(form.pending_fields)}"
        if form.validation_errors:
            desc += f"\nErrors: {'; '.join(form.validation_errors)}"
        parts.append(desc)

    if ctx.custom:
        desc = "\nAdditional context:"
        for key, value in _pairs(ctx.custom):
            desc += f"\n  - {key}: {json.dumps(value, ensure_ascii=False)}"
        parts.append(desc)

    return "".join(parts)


def origin_allowed(origin: str, allowed_origins: list[str]) -> bool:
    """Exact match or prefix match against the allow-list."""
    if not origin:
        return False
    return any(origin == allowed or origin.startswith(allowed) for allowed in allowed_origins)


class ContextChannel:
    """Holds the latest page context and the origin-error state."""

    def __init__(
        self,
        allowed_origins: list[str],
        embedded: bool = False,
        welcome_message: str = "",
    ):
        self.allowed_origins = list(allowed_origins)
        self.embedded = embedded
        self.welcome_message = welcome_message
        self.current_context: PageContext | None = None
        self.origin_error: str | None = None

    @classmethod
    def from_settings(cls, settings, embedded: bool = False) -> "ContextChannel":
        return cls(
            allowed_origins=settings.allowed_origins,
            embedded=embedded,
            welcome_message=settings.welcome_message,
        )

    @property
    def has_context(self) -> bool:
        return self.current_context is not None

    @property
    def route(self) -> str | None:
        return self.current_context.route if self.current_context else None

    def receive(self, origin: str, envelope: Any) -> bool:
        """
        Handle one inbound cross-origin message.
        Returns True if the message came from an allowed origin.
        """
        if not origin_allowed(origin, self.allowed_origins):
            logger.info("Ignored context message from %s", origin or "<no origin>")
            self.origin_error = ORIGIN_ERROR
            return False

        self.origin_error = None

        if isinstance(envelope, dict) and envelope.get("type") == CONTEXT_UPDATE:
            try:
                ctx = PageContext.from_dict(envelope.get("context"))
            except ValueError as e:
                logger.warning("Malformed CONTEXT_UPDATE from %s: %s", origin, e)
                return True
            self.current_context = ctx
            logger.info(
                "Context updated (%s): route=%s modal=%s edit=%s tab=%s form=%s",
                ctx.change_type or "update",
                ctx.route,
                ctx.modal.type if ctx.modal else None,
                ctx.edit.entity_type if ctx.edit else None,
                ctx.tab.active_tab if ctx.tab else None,
                ctx.form.form_name if ctx.form else None,
            )
        return True

    def seed_from_source(self, source: str | None) -> None:
        """Fallback: a route-only snapshot from the `source` query parameter."""
        if not source:
            return
        self.current_context = PageContext(route=source, change_type="navigation")
        logger.info("Context initialized from source param: %s", source)

    def clear(self) -> None:
        self.current_context = None
        self.origin_error = None

    def build_description(self) -> str:
        return describe(self.current_context)

    def summary(self) -> str:
        """Short label for the chat header."""
        ctx = self.current_context
        if ctx is None:
            return "Not connected"
        if ctx.modal:
            return f"📋 {ctx.modal.title or ctx.modal.type}"
        if ctx.edit and ctx.edit.is_editing:
            return f"✏️ Editing {ctx.edit.entity_name or ctx.edit.entity_type}"
        if ctx.form:
            if ctx.form.current_step and ctx.form.total_steps:
                return f"📝 {ctx.form.form_name} ({ctx.form.current_step}/{ctx.form.total_steps})"
            return f"📝 {ctx.form.form_name}"
        if ctx.tab:
            return f"📁 {ctx.tab.active_tab}"
        return f"📍 {ctx.route}"

    def error_message(self) -> str | None:
        if self.origin_error and self.embedded:
            return EMBEDDED_ORIGIN_ADVISORY
        return None

    def initial_message(self) -> str:
        """The advisory wins over everything else."""
        return self.error_message() or self.welcome_message
