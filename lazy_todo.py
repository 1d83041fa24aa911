#!/usr/bin/env python3
# lazy_todo: terminal to-do list with sub-tasks, search and sort
#
# Hotkeys (list)
#   j/k, arrows  move selection
#   a  add a task (title -> content -> priority -> deadline)
#   e  edit the selected task or sub-task
#   d  delete the selected entry      u  restore the last deleted entry
#   Enter  toggle done                l/h  expand/collapse sub-tasks
#   o  open details (space adds a sub-task, j/k select, Enter toggles)
#   s  cycle sort (completion -> deadline -> priority)
#   <space><space>  search (type, Enter apply, Esc cancel)
#   !..)  switch theme
#   q  quit
#
# Config (~/.lazy_todo.yml, all keys optional)
#   data_file: ~/todos.json
#   state_file: ~/.lazy_todo.ui.json
#   log_file: ~/lazy_todo.log
#   log_level: ERROR
#   double_press_ms: 500
#   undo_limit: 50
#   theme: Paper

from __future__ import annotations

import argparse
import datetime as dt
import json
import logging
import os
import sys
import time
import unicodedata
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Callable, Deque, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import yaml
from prompt_toolkit import Application
from prompt_toolkit.data_structures import Point
from prompt_toolkit.filters import Condition
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.keys import Keys
from prompt_toolkit.layout import HSplit, VSplit, Layout, Window
from prompt_toolkit.layout.containers import ConditionalContainer, Float, FloatContainer
from prompt_toolkit.layout.controls import FormattedTextControl
from prompt_toolkit.layout.dimension import Dimension
from prompt_toolkit.styles import Style
from prompt_toolkit.utils import get_cwidth
from prompt_toolkit.widgets import Frame


LOGGER_NAME = 'lazy_todo'
DEFAULT_CONFIG_PATH = os.path.expanduser("~/.lazy_todo.yml")
DEFAULT_DATA_FILE = "todos.json"
DEFAULT_STATE_PATH = os.path.expanduser("~/.lazy_todo.ui.json")
DEFAULT_DOUBLE_PRESS_MS = 500


# -----------------------------
# Config models
# -----------------------------
@dataclass
class Config:
    data_file: str = DEFAULT_DATA_FILE
    state_file: str = DEFAULT_STATE_PATH
    log_file: Optional[str] = None       # None => lazy_todo.log next to this module
    log_level: str = "ERROR"
    double_press_ms: int = DEFAULT_DOUBLE_PRESS_MS
    undo_limit: Optional[int] = None     # None => unbounded
    theme: Optional[str] = None


def _positive_int(raw: dict, key: str, default: Optional[int], allow_none: bool = False) -> Optional[int]:
    if key not in raw:
        return default
    value = raw.get(key)
    if value is None and allow_none:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"Config: '{key}' must be a positive integer, got {value!r}.")
    return value


def _optional_path(raw: dict, key: str, default: Optional[str]) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        return default
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Config: '{key}' must be a non-empty string.")
    return os.path.expanduser(value.strip())


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config: top level must be a mapping.")
    level = str(raw.get("log_level") or "ERROR").strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"Config: unknown log_level {level!r}.")
    theme = raw.get("theme")
    return Config(
        data_file=_optional_path(raw, "data_file", DEFAULT_DATA_FILE) or DEFAULT_DATA_FILE,
        state_file=_optional_path(raw, "state_file", DEFAULT_STATE_PATH) or DEFAULT_STATE_PATH,
        log_file=_optional_path(raw, "log_file", None),
        log_level=level,
        double_press_ms=_positive_int(raw, "double_press_ms", DEFAULT_DOUBLE_PRESS_MS) or DEFAULT_DOUBLE_PRESS_MS,
        undo_limit=_positive_int(raw, "undo_limit", None, allow_none=True),
        theme=str(theme).strip() if theme else None,
    )


# -----------------------------
# Themes
# -----------------------------


@dataclass
class ThemePreset:
    name: str
    style: Dict[str, str]
    description: Optional[str] = None


BASE_THEME_STYLE: Dict[str, str] = {
    'title': 'bold #ffd75f',
    'title.unsynced': 'bold #ff8787',
    'frame.border': '#5f5f5f',
    'frame.label': 'bold #87d7ff',
    'list.todo': '#ff5f5f',
    'list.done': '#5fd75f',
    'list.text': '#f0f0f0',
    'list.meta': '#8a8a8a',
    'list.branch': '#5f5f5f',
    'list.selected': 'bg:#005f87',
    'list.empty': 'italic #8a8a8a',
    'list.key': 'bold #ffd75f',
    'priority.low': '#5fd75f',
    'priority.medium': '#ffd75f',
    'priority.high': '#ff5f5f',
    'details.label': '#5fd7ff',
    'details.value': '#f0f0f0',
    'details.cursor': 'reverse',
    'instructions': '#ffffff bg:#000000',
    'status': '#ffd787',
    'status.error': 'bold #ff8787',
    'search.query': '#ffd75f',
    'search.result': '#f0f0f0',
    'search.cursor': 'bg:#005f87',
}

# Shift+digit on a US layout; each key selects the theme at that position.
SHIFTED_DIGIT_KEYS = ['!', '@', '#', '$', '%', '^', '&', '*', '(', ')']


def _load_theme_presets(theme_dir: Path) -> List[ThemePreset]:
    presets: List[ThemePreset] = [ThemePreset(name="Default", style=dict(BASE_THEME_STYLE))]
    seen = {presets[0].name.lower()}
    if not theme_dir.is_dir():
        return presets
    candidates = sorted(theme_dir.glob("*.yml")) + sorted(theme_dir.glob("*.yaml"))
    for path in candidates:
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError):
            logging.getLogger(LOGGER_NAME).warning("Failed to load theme file %s", path, exc_info=True)
            continue
        if not isinstance(data, dict):
            continue
        name = str(data.get("name") or path.stem).strip() or path.stem
        overrides = data.get("style") if isinstance(data.get("style"), dict) else {}
        style_dict = dict(BASE_THEME_STYLE)
        for key, value in overrides.items():
            if isinstance(key, str) and isinstance(value, str):
                style_dict[key] = value
        preset = ThemePreset(name=name, style=style_dict, description=data.get("description"))
        lowered = name.lower()
        if lowered == "default":
            presets[0] = preset
            continue
        if lowered in seen:
            continue
        presets.append(preset)
        seen.add(lowered)
    return presets


def _theme_index(presets: Sequence[ThemePreset], name: object) -> Optional[int]:
    if not isinstance(name, str) or not name:
        return None
    lowered = name.lower()
    for idx, preset in enumerate(presets):
        if preset.name.lower() == lowered:
            return idx
    return None


# -----------------------------
# Task model
# -----------------------------
def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


class PrioritySelection(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    def next(self) -> "PrioritySelection":
        order = list(PrioritySelection)
        return order[(order.index(self) + 1) % len(order)]

    def prev(self) -> "PrioritySelection":
        order = list(PrioritySelection)
        return order[(order.index(self) - 1) % len(order)]

    @classmethod
    def from_value(cls, value: Optional[str]) -> "PrioritySelection":
        """Map a stored priority string to a selection; unknown values become LOW."""
        lowered = (value or "").strip().lower()
        for member in cls:
            if member.value == lowered:
                return member
        return cls.LOW


@dataclass
class Task:
    title: str
    content: str = ""
    priority: str = PrioritySelection.LOW.value
    date_time: str = field(default_factory=_now_iso)
    deadline: str = ""
    done: bool = False
    subtasks: List["Task"] = field(default_factory=list)
    expanded: bool = False

    def add_subtask(self, title: str) -> "Task":
        sub = Task(title=title)
        self.subtasks.append(sub)
        return sub

    def completion_rate(self) -> float:
        if not self.subtasks:
            return 100.0 if self.done else 0.0
        completed = sum(1 for sub in self.subtasks if sub.done)
        return completed / len(self.subtasks) * 100.0

    def to_dict(self) -> Dict[str, object]:
        return {
            'title': self.title,
            'content': self.content,
            'priority': self.priority,
            'date_time': self.date_time,
            'deadline': self.deadline,
            'done': self.done,
            'subtasks': [sub.to_dict() for sub in self.subtasks],
            'expanded': self.expanded,
        }

    @classmethod
    def from_dict(cls, raw: object) -> "Task":
        """Build a task from a decoded JSON object, defaulting fields that older files lack."""
        if not isinstance(raw, dict):
            raise ValueError(f"task entry must be an object, got {type(raw).__name__}")
        title = raw.get('title')
        if not isinstance(title, str):
            raise ValueError("task entry has no 'title'")
        values: Dict[str, object] = {'title': title}
        for key, default in TASK_FIELD_DEFAULTS.items():
            values[key] = raw[key] if key in raw and raw[key] is not None else default()
        for key in ('content', 'priority', 'date_time', 'deadline'):
            if not isinstance(values[key], str):
                raise ValueError(f"'{key}' must be a string in task {title!r}")
        for key in ('done', 'expanded'):
            if not isinstance(values[key], bool):
                raise ValueError(f"'{key}' must be a boolean in task {title!r}")
        subtasks = values['subtasks']
        if not isinstance(subtasks, list):
            raise ValueError(f"'subtasks' must be a list in task {title!r}")
        values['subtasks'] = [cls.from_dict(sub) for sub in subtasks]
        return cls(**values)


# Fields added over time; files written before they existed still load.
TASK_FIELD_DEFAULTS: Dict[str, Callable[[], object]] = {
    'content': str,
    'priority': lambda: PrioritySelection.LOW.value,
    'date_time': _now_iso,
    'deadline': str,
    'done': bool,
    'subtasks': list,
    'expanded': bool,
}


def _identity_index(items: Sequence[Task], target: Task) -> Optional[int]:
    for idx, item in enumerate(items):
        if item is target:
            return idx
    return None


# -----------------------------
# Store
# -----------------------------
class TaskStoreError(Exception):
    """Raised when the task file exists but cannot be read or parsed."""


class TaskStore:
    def __init__(self, path: str, tasks: Optional[List[Task]] = None):
        self.path = path
        self.tasks: List[Task] = list(tasks or [])

    @classmethod
    def load(cls, path: str) -> "TaskStore":
        if not os.path.exists(path):
            return cls(path, [])
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            raise TaskStoreError(f"Unable to read task file {path}: {exc}") from exc
        if not isinstance(data, list):
            raise TaskStoreError(f"Task file {path} must contain a JSON list")
        tasks: List[Task] = []
        for idx, raw in enumerate(data):
            try:
                tasks.append(Task.from_dict(raw))
            except ValueError as exc:
                raise TaskStoreError(f"Task file {path}, entry {idx}: {exc}") from exc
        return cls(path, tasks)

    def save(self) -> None:
        """Write the whole list; the file is replaced atomically."""
        directory = os.path.dirname(self.path)
        if directory and not os.path.isdir(directory):
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump([task.to_dict() for task in self.tasks], f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except (OSError, ValueError):
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def append(self, task: Task) -> None:
        self.tasks.append(task)

    def remove(self, task: Task) -> bool:
        idx = _identity_index(self.tasks, task)
        if idx is None:
            return False
        del self.tasks[idx]
        return True

    def contains(self, task: Task) -> bool:
        return _identity_index(self.tasks, task) is not None

    def __len__(self) -> int:
        return len(self.tasks)

    def __iter__(self):
        return iter(self.tasks)


# -----------------------------
# Index mapping (flat cursor <-> task/sub-task)
# -----------------------------
Target = Tuple[int, Optional[int]]


def total_slots(tasks: Sequence[Task]) -> int:
    return sum(1 + (len(t.subtasks) if t.expanded else 0) for t in tasks)


def visible_rows(tasks: Sequence[Task]) -> List[Target]:
    rows: List[Target] = []
    for ti, task in enumerate(tasks):
        rows.append((ti, None))
        if task.expanded:
            rows.extend((ti, si) for si in range(len(task.subtasks)))
    return rows


def resolve_index(tasks: Sequence[Task], cursor: int) -> Tuple[Optional[int], Optional[int]]:
    """Return (task_index, subtask_index) for a flat cursor, or (None, None) if out of range."""
    if cursor < 0:
        return None, None
    current = 0
    for ti, task in enumerate(tasks):
        if current == cursor:
            return ti, None
        current += 1
        if task.expanded:
            count = len(task.subtasks)
            if cursor < current + count:
                return ti, cursor - current
            current += count
    return None, None


def flat_index(tasks: Sequence[Task], task_index: int, subtask_index: Optional[int] = None) -> Optional[int]:
    if not (0 <= task_index < len(tasks)):
        return None
    base = total_slots(tasks[:task_index])
    if subtask_index is None:
        return base
    task = tasks[task_index]
    if not task.expanded or not (0 <= subtask_index < len(task.subtasks)):
        return None
    return base + 1 + subtask_index


def clamp_cursor(tasks: Sequence[Task], cursor: int) -> int:
    total = total_slots(tasks)
    if total == 0:
        return 0
    return max(0, min(cursor, total - 1))


def move_cursor_down(tasks: Sequence[Task], cursor: int) -> int:
    return clamp_cursor(tasks, cursor + 1)


def move_cursor_up(tasks: Sequence[Task], cursor: int) -> int:
    return clamp_cursor(tasks, cursor - 1)


# -----------------------------
# Search / sort
# -----------------------------
def search_tasks(tasks: Iterable[Task], query: str) -> List[Task]:
    """Case-sensitive containment on title or content; keeps store order and identity."""
    return [t for t in tasks if query in t.title or query in t.content]


class SortMode(Enum):
    BY_COMPLETION = "Completion"
    BY_DEADLINE = "Deadline"
    BY_PRIORITY = "Priority"

    @property
    def label(self) -> str:
        return self.value


SORT_CYCLE = [SortMode.BY_COMPLETION, SortMode.BY_DEADLINE, SortMode.BY_PRIORITY]
PRIORITY_RANK = {'high': 0, 'medium': 1, 'low': 2}


def cycle_sort_mode(mode: SortMode) -> SortMode:
    return SORT_CYCLE[(SORT_CYCLE.index(mode) + 1) % len(SORT_CYCLE)]


def _priority_rank(task: Task) -> int:
    return PRIORITY_RANK.get((task.priority or '').strip().lower(), len(PRIORITY_RANK))


def sort_tasks(tasks: List[Task], mode: SortMode) -> None:
    if mode is SortMode.BY_COMPLETION:
        tasks.sort(key=lambda t: t.done)
    elif mode is SortMode.BY_DEADLINE:
        # empty deadlines sort after every real one
        tasks.sort(key=lambda t: (t.deadline == "", t.deadline))
    elif mode is SortMode.BY_PRIORITY:
        tasks.sort(key=_priority_rank)


# -----------------------------
# Undo buffer
# -----------------------------
@dataclass
class DeletedEntry:
    task: Task
    parent: Optional[Task] = None   # set when a sub-task was deleted


class UndoBuffer:
    def __init__(self, limit: Optional[int] = None):
        self._entries: Deque[DeletedEntry] = deque(maxlen=limit)

    def push(self, task: Task, parent: Optional[Task] = None) -> None:
        self._entries.append(DeletedEntry(task=task, parent=parent))

    def pop(self) -> Optional[DeletedEntry]:
        if not self._entries:
            return None
        return self._entries.pop()

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)


# -----------------------------
# Input modes
# -----------------------------
@dataclass(frozen=True)
class Browsing:
    pass


@dataclass(frozen=True)
class AddingTitle:
    pass


@dataclass(frozen=True)
class AddingContent:
    pass


@dataclass(frozen=True)
class AddingPriority:
    pass


@dataclass(frozen=True)
class AddingDeadline:
    pass


@dataclass(frozen=True)
class EditingTitle:
    target: Target


@dataclass(frozen=True)
class EditingContent:
    target: Target


@dataclass(frozen=True)
class EditingPriority:
    target: Target


@dataclass(frozen=True)
class EditingDeadline:
    target: Target


@dataclass(frozen=True)
class ViewingDetails:
    task_index: int


@dataclass(frozen=True)
class ViewingSubtaskDetails:
    task_index: int
    subtask_index: int


@dataclass(frozen=True)
class AddingSubtask:
    task_index: int


@dataclass(frozen=True)
class Searching:
    pass


Mode = Union[
    Browsing, AddingTitle, AddingContent, AddingPriority, AddingDeadline,
    EditingTitle, EditingContent, EditingPriority, EditingDeadline,
    ViewingDetails, ViewingSubtaskDetails, AddingSubtask, Searching,
]

TITLE_MODES = (AddingTitle, EditingTitle, AddingSubtask)
CONTENT_MODES = (AddingContent, EditingContent)
PRIORITY_MODES = (AddingPriority, EditingPriority)
DEADLINE_MODES = (AddingDeadline, EditingDeadline)
DETAIL_MODES = (ViewingDetails, ViewingSubtaskDetails)


def _is_char(key: str) -> bool:
    return len(key) == 1 and key.isprintable()


# -----------------------------
# Session (mode state machine)
# -----------------------------
class TodoSession:
    """Owns the store, the visible view and every piece of per-session input state.

    ``view`` holds the same Task objects as ``store.tasks`` (possibly filtered
    or reordered), so edits made through it land in the store directly.
    Keys are plain strings: printable characters, or one of 'enter',
    'escape', 'backspace', 'up', 'down'.
    """

    _MODE_HANDLERS = {
        AddingTitle: '_on_adding_title',
        AddingContent: '_on_adding_content',
        AddingPriority: '_on_priority',
        AddingDeadline: '_on_adding_deadline',
        EditingTitle: '_on_editing_title',
        EditingContent: '_on_editing_content',
        EditingPriority: '_on_priority',
        EditingDeadline: '_on_editing_deadline',
        ViewingDetails: '_on_viewing_details',
        ViewingSubtaskDetails: '_on_viewing_subtask',
        AddingSubtask: '_on_adding_subtask',
        Searching: '_on_searching',
    }

    def __init__(
        self,
        store: TaskStore,
        *,
        double_press_ms: int = DEFAULT_DOUBLE_PRESS_MS,
        undo_limit: Optional[int] = None,
        sort_mode: SortMode = SortMode.BY_COMPLETION,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.view: List[Task] = list(store.tasks)
        self.mode: Mode = Browsing()
        self.cursor = 0
        self.subtask_cursor = 0
        self.search_cursor = 0
        self.input_title = ""
        self.input_content = ""
        self.input_priority = PrioritySelection.LOW
        self.input_deadline = ""
        self.search_query = ""
        self.sort_mode = sort_mode
        self.undo = UndoBuffer(undo_limit)
        self.double_press_window = double_press_ms / 1000.0
        self.last_space_press: Optional[float] = None
        self.status_line = ""
        self.unsynced = False
        # an edit step has written into the entity but nothing saved it yet
        self._edit_dirty = False
        self.quit_requested = False
        self.logger = logger or logging.getLogger(LOGGER_NAME)

    # --- dispatch ---
    def handle_key(self, key: str, now: Optional[float] = None) -> None:
        if now is None:
            now = time.monotonic()
        before = self.mode
        if isinstance(self.mode, Browsing):
            self._on_browsing(key, now)
        else:
            getattr(self, self._MODE_HANDLERS[type(self.mode)])(key)
        if self.mode != before:
            self.logger.debug("mode %s -> %s (key=%r)", before, self.mode, key)

    # --- lookups ---
    @property
    def cursor_visible(self) -> bool:
        return not isinstance(self.mode, Searching)

    def selected_target(self) -> Optional[Target]:
        ti, si = resolve_index(self.view, self.cursor)
        if ti is None:
            return None
        return ti, si

    def entity(self, target: Target) -> Optional[Task]:
        ti, si = target
        task = self.view_task(ti)
        if task is None or si is None:
            return task
        if 0 <= si < len(task.subtasks):
            return task.subtasks[si]
        return None

    def view_task(self, task_index: int) -> Optional[Task]:
        if 0 <= task_index < len(self.view):
            return self.view[task_index]
        return None

    def search_results(self) -> List[Task]:
        return search_tasks(self.store.tasks, self.search_query)

    # --- persistence ---
    def _persist(self, message: Optional[str] = None) -> bool:
        """Save the full store; on failure keep memory as-is and retry on the next save."""
        try:
            self.store.save()
        except (OSError, ValueError) as exc:
            self.unsynced = True
            self.status_line = f"Save failed: {exc}"
            self.logger.error("save failed path=%s", self.store.path, exc_info=True)
            return False
        self.unsynced = False
        self._edit_dirty = False
        self.status_line = message or ""
        self.logger.debug("saved %d tasks to %s", len(self.store), self.store.path)
        return True

    # --- buffers ---
    def reset_buffers(self) -> None:
        self.input_title = ""
        self.input_content = ""
        self.input_priority = PrioritySelection.LOW
        self.input_deadline = ""

    def _edit_buffer(self, attr: str, key: str) -> None:
        if key == 'backspace':
            setattr(self, attr, getattr(self, attr)[:-1])
        elif _is_char(key):
            setattr(self, attr, getattr(self, attr) + key)

    def cancel_input(self) -> None:
        edited = self._edit_dirty
        self.reset_buffers()
        self.mode = Browsing()
        if edited or self.unsynced:
            self._persist("Edit cancelled" if edited else "Cancelled")
        else:
            self.status_line = "Cancelled"

    # --- cursor anchoring ---
    def _anchor(self) -> Tuple[Optional[Task], Optional[Task]]:
        target = self.selected_target()
        if target is None:
            return None, None
        ti, si = target
        task = self.view[ti]
        if si is None:
            return task, None
        return task.subtasks[si], task

    def _restore_anchor(self, anchor: Tuple[Optional[Task], Optional[Task]]) -> None:
        entity, parent = anchor
        owner = parent if parent is not None else entity
        ti = _identity_index(self.view, owner) if owner is not None else None
        if ti is None:
            self.cursor = clamp_cursor(self.view, self.cursor)
            return
        idx: Optional[int] = None
        if parent is not None and entity is not None:
            si = _identity_index(parent.subtasks, entity)
            if si is not None:
                idx = flat_index(self.view, ti, si)
        if idx is None:
            idx = flat_index(self.view, ti)
        self.cursor = idx if idx is not None else clamp_cursor(self.view, self.cursor)

    # --- browsing actions ---
    def _on_browsing(self, key: str, now: float) -> None:
        if key == ' ':
            last = self.last_space_press
            if last is not None and now - last < self.double_press_window:
                self.last_space_press = None
                self.start_search()
            else:
                self.last_space_press = now
            return
        self.last_space_press = None
        action = {
            'q': self.request_quit,
            'a': self.start_add,
            'e': self.start_edit,
            'd': self.delete_selected,
            'u': self.restore_deleted,
            'enter': self.toggle_done,
            'l': self.expand_selected,
            'h': self.collapse_selected,
            'o': self.open_details,
            'j': self.move_down,
            'down': self.move_down,
            'k': self.move_up,
            'up': self.move_up,
            's': self.cycle_sort,
        }.get(key)
        if action is not None:
            action()

    def request_quit(self) -> None:
        self.quit_requested = True

    def move_down(self) -> None:
        self.cursor = move_cursor_down(self.view, self.cursor)

    def move_up(self) -> None:
        self.cursor = move_cursor_up(self.view, self.cursor)

    def start_add(self) -> None:
        self.reset_buffers()
        self.mode = AddingTitle()
        self.status_line = ""

    def start_edit(self) -> None:
        target = self.selected_target()
        entity = self.entity(target) if target is not None else None
        if entity is None:
            return
        self.input_title = entity.title
        self.input_content = entity.content
        self.input_priority = PrioritySelection.from_value(entity.priority)
        self.input_deadline = entity.deadline
        self.mode = EditingTitle(target)
        self.status_line = ""

    def delete_selected(self) -> None:
        target = self.selected_target()
        if target is None:
            return
        ti, si = target
        task = self.view[ti]
        if si is None:
            del self.view[ti]
            self.store.remove(task)
            self.undo.push(task)
            removed = task
        else:
            removed = task.subtasks.pop(si)
            self.undo.push(removed, parent=task)
        self.cursor = clamp_cursor(self.view, self.cursor)
        self._persist(f"Deleted '{removed.title}' (u to restore)")

    def restore_deleted(self) -> None:
        entry = self.undo.pop()
        if entry is None:
            self.status_line = "Nothing to restore"
            return
        anchor = self._anchor()
        if entry.parent is not None and self.store.contains(entry.parent):
            entry.parent.subtasks.append(entry.task)
        else:
            self.store.append(entry.task)
            self.view.append(entry.task)
        self._restore_anchor(anchor)
        self._persist(f"Restored '{entry.task.title}'")

    def toggle_done(self) -> None:
        target = self.selected_target()
        entity = self.entity(target) if target is not None else None
        if entity is None:
            return
        entity.done = not entity.done
        self._persist()

    def _set_expanded(self, expanded: bool) -> None:
        target = self.selected_target()
        if target is None or target[1] is not None:
            return
        anchor = self._anchor()
        self.view[target[0]].expanded = expanded
        self._restore_anchor(anchor)

    def expand_selected(self) -> None:
        self._set_expanded(True)

    def collapse_selected(self) -> None:
        self._set_expanded(False)

    def open_details(self) -> None:
        target = self.selected_target()
        if target is None:
            return
        ti, si = target
        if si is None:
            self.subtask_cursor = 0
            self.mode = ViewingDetails(ti)
        else:
            self.subtask_cursor = si
            self.mode = ViewingSubtaskDetails(ti, si)

    def cycle_sort(self) -> None:
        anchor = self._anchor()
        self.sort_mode = cycle_sort_mode(self.sort_mode)
        sort_tasks(self.view, self.sort_mode)
        self._restore_anchor(anchor)
        self.status_line = f"Sort: {self.sort_mode.label}"

    def start_search(self) -> None:
        self.search_query = ""
        self.search_cursor = 0
        self.mode = Searching()
        self.status_line = ""

    # --- add sequence ---
    def _on_adding_title(self, key: str) -> None:
        if key == 'enter':
            if self.input_title:
                self.mode = AddingContent()
            else:
                self.status_line = "Title cannot be empty"
        elif key == 'escape':
            self.cancel_input()
        else:
            self._edit_buffer('input_title', key)

    def _on_adding_content(self, key: str) -> None:
        if key == 'enter':
            self.mode = AddingPriority()
        elif key == 'escape':
            self.cancel_input()
        else:
            self._edit_buffer('input_content', key)

    def _on_priority(self, key: str) -> None:
        if key in ('j', 'down'):
            self.input_priority = self.input_priority.next()
        elif key in ('k', 'up'):
            self.input_priority = self.input_priority.prev()
        elif key == 'enter':
            if isinstance(self.mode, EditingPriority):
                self.mode = EditingDeadline(self.mode.target)
            else:
                self.mode = AddingDeadline()
        elif key == 'escape':
            self.cancel_input()

    def _on_adding_deadline(self, key: str) -> None:
        if key == 'enter':
            if not self.input_title:
                self.status_line = "Title cannot be empty"
                return
            task = Task(
                title=self.input_title,
                content=self.input_content,
                priority=self.input_priority.value,
                deadline=self.input_deadline,
            )
            self.store.append(task)
            self.view.append(task)
            self.reset_buffers()
            self.mode = Browsing()
            self._persist(f"Added '{task.title}'")
        elif key == 'escape':
            self.cancel_input()
        else:
            self._edit_buffer('input_deadline', key)

    # --- edit sequence ---
    def _editing_entity(self) -> Optional[Task]:
        entity = self.entity(self.mode.target)
        if entity is None:
            self.logger.warning("edit target %s no longer exists", self.mode.target)
            self.cancel_input()
        return entity

    def _on_editing_title(self, key: str) -> None:
        if key == 'enter':
            entity = self._editing_entity()
            if entity is None:
                return
            if not self.input_title:
                self.status_line = "Title cannot be empty"
                return
            entity.title = self.input_title
            self._edit_dirty = True
            self.mode = EditingContent(self.mode.target)
        elif key == 'escape':
            self.cancel_input()
        else:
            self._edit_buffer('input_title', key)

    def _on_editing_content(self, key: str) -> None:
        if key == 'enter':
            entity = self._editing_entity()
            if entity is None:
                return
            entity.content = self.input_content
            self._edit_dirty = True
            self.mode = EditingPriority(self.mode.target)
        elif key == 'escape':
            self.cancel_input()
        else:
            self._edit_buffer('input_content', key)

    def _on_editing_deadline(self, key: str) -> None:
        if key == 'enter':
            entity = self._editing_entity()
            if entity is None:
                return
            entity.priority = self.input_priority.value
            entity.deadline = self.input_deadline
            entity.date_time = _now_iso()
            self.reset_buffers()
            self.mode = Browsing()
            self._persist(f"Updated '{entity.title}'")
        elif key == 'escape':
            self.cancel_input()
        else:
            self._edit_buffer('input_deadline', key)

    # --- search ---
    def _on_searching(self, key: str) -> None:
        if key == 'enter':
            self.view = search_tasks(self.store.tasks, self.search_query)
            self.cursor = 0
            self.mode = Browsing()
            if self.search_query:
                self.status_line = f"Filter: {self.search_query} ({len(self.view)} match)"
            else:
                self.status_line = "Showing all tasks"
        elif key == 'escape':
            self.search_query = ""
            self.search_cursor = 0
            self.mode = Browsing()
            self.status_line = ""
        elif key == 'down':
            count = len(self.search_results())
            self.search_cursor = max(0, min(self.search_cursor + 1, count - 1))
        elif key == 'up':
            self.search_cursor = max(0, self.search_cursor - 1)
        else:
            self._edit_buffer('search_query', key)
            self.search_cursor = 0

    # --- details / sub-tasks ---
    def _on_viewing_details(self, key: str) -> None:
        task = self.view_task(self.mode.task_index)
        if task is None or key in ('q', 'escape'):
            self.mode = Browsing()
            return
        count = len(task.subtasks)
        if key == ' ':
            self.input_title = ""
            self.mode = AddingSubtask(self.mode.task_index)
        elif key in ('j', 'down'):
            self.subtask_cursor = max(0, min(self.subtask_cursor + 1, count - 1))
        elif key in ('k', 'up'):
            self.subtask_cursor = max(0, self.subtask_cursor - 1)
        elif key == 'enter':
            if 0 <= self.subtask_cursor < count:
                sub = task.subtasks[self.subtask_cursor]
                sub.done = not sub.done
                self._persist()
        elif key == 'o':
            if 0 <= self.subtask_cursor < count:
                self.mode = ViewingSubtaskDetails(self.mode.task_index, self.subtask_cursor)

    def _on_viewing_subtask(self, key: str) -> None:
        ti, si = self.mode.task_index, self.mode.subtask_index
        if key in ('q', 'escape'):
            self.subtask_cursor = si
            self.mode = ViewingDetails(ti)
        elif key == 'enter':
            sub = self.entity((ti, si))
            if sub is None:
                self.mode = ViewingDetails(ti)
                return
            sub.done = not sub.done
            self._persist()

    def _on_adding_subtask(self, key: str) -> None:
        ti = self.mode.task_index
        if key == 'enter':
            task = self.view_task(ti)
            if task is None:
                self.input_title = ""
                self.mode = Browsing()
                return
            if not self.input_title:
                self.status_line = "Title cannot be empty"
                return
            sub = task.add_subtask(self.input_title)
            self.input_title = ""
            self.mode = ViewingDetails(ti)
            self._persist(f"Added sub-task '{sub.title}'")
        elif key == 'escape':
            self.input_title = ""
            self.mode = ViewingDetails(ti)
        else:
            self._edit_buffer('input_title', key)


# -----------------------------
# UI state (sort mode / theme between runs)
# -----------------------------
def load_ui_state(path: str) -> dict:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def save_ui_state(path: str, data: dict) -> None:
    try:
        directory = os.path.dirname(path)
        if directory and not os.path.isdir(directory):
            os.makedirs(directory, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
    except OSError:
        logging.getLogger(LOGGER_NAME).warning("Unable to write UI state %s", path, exc_info=True)


def _sort_mode_from_state(state: dict) -> SortMode:
    name = state.get('sort_mode')
    if isinstance(name, str) and name in SortMode.__members__:
        return SortMode[name]
    return SortMode.BY_COMPLETION


# -----------------------------
# Rendering helpers
# -----------------------------
Fragments = List[Tuple[str, str]]


def _char_width(ch: str) -> int:
    if unicodedata.combining(ch) or unicodedata.category(ch) == "Cf":
        return 0
    return max(1, get_cwidth(ch))


def _display_width(text: str) -> int:
    return sum(_char_width(ch) for ch in text)


def _sanitize_cell_text(s: Optional[str]) -> str:
    return (s or "").replace("\n", " ").replace("\r", " ")


def _truncate(s: str, maxlen: int) -> str:
    """Truncate to a display width, keeping whole glyphs."""
    s = _sanitize_cell_text(s)
    if maxlen <= 0:
        return ""
    if _display_width(s) <= maxlen:
        return s
    ellipsis = "…"
    out: List[str] = []
    width = 0
    for ch in s:
        ch_w = _char_width(ch)
        if width + ch_w + 1 > maxlen:
            break
        out.append(ch)
        width += ch_w
    return "".join(out) + ellipsis


def _priority_style(priority: str) -> str:
    lowered = (priority or '').strip().lower()
    if lowered in PRIORITY_RANK:
        return f"class:priority.{lowered}"
    return ""


def build_list_fragments(session: TodoSession, title_width: int = 60) -> Fragments:
    """Return (style, text) tuples for the task list, one line per visible slot."""
    if not session.view:
        if session.store.tasks:
            return [("class:list.empty", "No matches. Search with an empty query to show all tasks.")]
        return [("class:list.empty", "No tasks yet. Press "), ("class:list.key", "a"), ("class:list.empty", " to add one.")]
    frags: Fragments = []
    for flat, (ti, si) in enumerate(visible_rows(session.view)):
        selected = session.cursor_visible and flat == session.cursor
        sel = " class:list.selected" if selected else ""
        task = session.view[ti]
        if frags:
            frags.append(("", "\n"))
        if si is None:
            marker = " "
            if task.subtasks:
                marker = "▾" if task.expanded else "▸"
            frags.append(("class:list.branch" + sel, f"{marker} "))
            frags.append((("class:list.done" if task.done else "class:list.todo") + sel, "✔" if task.done else "✘"))
            frags.append(("class:list.text" + sel, f": {_truncate(task.title, title_width)}"))
            if _priority_style(task.priority):
                frags.append((_priority_style(task.priority) + sel, " ●"))
            if task.deadline:
                frags.append(("class:list.meta" + sel, f" | {_truncate(task.deadline, 20)}"))
            frags.append(("class:list.meta" + sel, f" | {task.completion_rate():.0f}%"))
        else:
            sub = task.subtasks[si]
            frags.append(("class:list.branch" + sel, "    ├ "))
            frags.append((("class:list.done" if sub.done else "class:list.todo") + sel, "✔" if sub.done else "✘"))
            frags.append(("class:list.text" + sel, f" {_truncate(sub.title, title_width - 4)}"))
    return frags


def _detail_lines(task: Task) -> Fragments:
    priority = PrioritySelection.from_value(task.priority).label if _priority_style(task.priority) else "Unknown"
    rows = [
        ("Title", task.title),
        ("Content", task.content),
        ("Priority", priority),
        ("Deadline", task.deadline or "No Deadline"),
        ("Status", "✔ Completed" if task.done else "✘ Not Completed"),
        ("Updated", task.date_time),
    ]
    frags: Fragments = []
    for label, value in rows:
        frags.append(("class:details.label", f"{label}: "))
        frags.append(("class:details.value", f"{value}\n"))
    return frags


def build_details_fragments(session: TodoSession) -> Fragments:
    mode = session.mode
    if isinstance(mode, ViewingSubtaskDetails):
        sub = session.entity((mode.task_index, mode.subtask_index))
        if sub is None:
            return []
        return _detail_lines(sub)
    if not isinstance(mode, (ViewingDetails, AddingSubtask)):
        return []
    task = session.view_task(mode.task_index)
    if task is None:
        return []
    frags = _detail_lines(task)
    frags.append(("class:details.label", "Progress: "))
    frags.append(("class:details.value", f"{task.completion_rate():.0f}%\n\n"))
    frags.append(("class:details.label", "Sub-tasks\n"))
    if not task.subtasks:
        frags.append(("class:list.empty", "  (none, press space to add)\n"))
    for idx, sub in enumerate(task.subtasks):
        cursor = " class:details.cursor" if idx == session.subtask_cursor else ""
        mark = "✔" if sub.done else "✘"
        frags.append((("class:list.done" if sub.done else "class:list.todo") + cursor, f"  {mark}"))
        frags.append(("class:details.value" + cursor, f" {sub.title}\n"))
    return frags


def instructions_text(session: TodoSession) -> str:
    mode = session.mode
    if isinstance(mode, Browsing):
        return "q: Quit | a: Add | d: Delete | u: Undo | e: Edit | o: Open | l/h: Expand | s: Sort | <space><space>: Search | Enter: Toggle Done"
    if isinstance(mode, AddingSubtask):
        return f"Enter subtask title: {session.input_title}"
    if isinstance(mode, TITLE_MODES):
        return f"Enter title: {session.input_title}"
    if isinstance(mode, CONTENT_MODES):
        return f"Enter content: {session.input_content}"
    if isinstance(mode, PRIORITY_MODES):
        return f"Priority: {session.input_priority.label}  (j/k to change, Enter to confirm)"
    if isinstance(mode, DEADLINE_MODES):
        return f"Enter deadline: {session.input_deadline}"
    if isinstance(mode, ViewingDetails):
        return "q: Back | <space>: Add Subtask | j/k: Select | Enter: Toggle Subtask Done | o: Open Subtask"
    if isinstance(mode, ViewingSubtaskDetails):
        return "q: Back | Enter: Toggle Subtask Done"
    if isinstance(mode, Searching):
        return "Type to search | Enter to filter | Esc to cancel"
    return ""


def build_title_fragments(session: TodoSession) -> Fragments:
    frags: Fragments = [("class:title", f" Lazy Todo - Sort Mode: {session.sort_mode.label}")]
    if session.unsynced:
        frags.append(("class:title.unsynced", "  [unsaved]"))
    return frags


def build_status_fragments(session: TodoSession) -> Fragments:
    if not session.status_line:
        return [("class:status", f" {len(session.view)}/{len(session.store)} tasks")]
    style = "class:status.error" if session.status_line.startswith("Save failed") else "class:status"
    return [(style, f" {session.status_line}")]


def build_search_fragments(session: TodoSession) -> Fragments:
    frags: Fragments = [("class:search.query", f"Search: {session.search_query}\n")]
    results = session.search_results()
    if not results:
        frags.append(("class:list.empty", "  no matches"))
        return frags
    for idx, task in enumerate(results):
        style = "class:search.result"
        if idx == session.search_cursor:
            style += " class:search.cursor"
        mark = "✔" if task.done else "✘"
        frags.append((style, f"  {mark}: {_truncate(task.title, 70)}\n"))
    return frags


# -----------------------------
# TUI
# -----------------------------
NAMED_KEYS = ('enter', 'escape', 'backspace', 'up', 'down')


def build_key_bindings(
    session: TodoSession,
    on_exit: Optional[Callable[[], None]] = None,
    on_theme: Optional[Callable[[int], None]] = None,
    theme_count: int = 0,
) -> KeyBindings:
    kb = KeyBindings()
    is_browsing = Condition(lambda: isinstance(session.mode, Browsing))

    def finish(event) -> None:
        if not session.quit_requested:
            return
        if on_exit is not None:
            on_exit()
        event.app.exit()

    for key_name in NAMED_KEYS:

        @kb.add(key_name)
        def _(event, key=key_name):
            session.handle_key(key)
            finish(event)

    # printable characters, space included; special keys carry no usable data here
    @kb.add(Keys.Any)
    def _(event):
        ch = event.data or ""
        if not _is_char(ch):
            return
        session.handle_key(ch)
        finish(event)

    for idx, key_name in enumerate(SHIFTED_DIGIT_KEYS):
        if idx >= theme_count:
            break

        @kb.add(key_name, filter=is_browsing)
        def _(event, index=idx):
            if on_theme is not None:
                on_theme(index)

    @kb.add('c-c')
    def _(event):
        session.request_quit()
        finish(event)

    return kb


def build_layout(session: TodoSession) -> Layout:
    is_details = Condition(lambda: isinstance(session.mode, (ViewingDetails, ViewingSubtaskDetails, AddingSubtask)))
    is_searching = Condition(lambda: isinstance(session.mode, Searching))

    list_control = FormattedTextControl(
        text=lambda: build_list_fragments(session),
        get_cursor_position=lambda: Point(x=0, y=session.cursor),
        focusable=True,
        show_cursor=False,
    )
    list_window = Window(content=list_control, wrap_lines=False, always_hide_cursor=True)
    details_window = Window(
        content=FormattedTextControl(text=lambda: build_details_fragments(session)),
        wrap_lines=True,
        always_hide_cursor=True,
    )
    body = VSplit([
        Frame(list_window, title="Todos", width=Dimension(weight=7)),
        ConditionalContainer(Frame(details_window, title="Details", width=Dimension(weight=3)), filter=is_details),
    ])
    title_window = Window(content=FormattedTextControl(text=lambda: build_title_fragments(session)), height=1)
    instructions_window = Window(
        content=FormattedTextControl(text=lambda: [("class:instructions", instructions_text(session))]),
        height=1,
        style="class:instructions",
    )
    status_window = Window(content=FormattedTextControl(text=lambda: build_status_fragments(session)), height=1)
    root = HSplit([
        title_window,
        body,
        Frame(instructions_window, title="Instructions"),
        status_window,
    ])
    search_window = Window(
        content=FormattedTextControl(text=lambda: build_search_fragments(session)),
        wrap_lines=False,
        always_hide_cursor=True,
    )
    search_float = Float(
        content=ConditionalContainer(Frame(search_window, title="Search"), filter=is_searching),
        top=3,
        left=8,
        right=8,
        height=14,
    )
    container = FloatContainer(content=root, floats=[search_float])
    return Layout(container, focused_element=list_window)


def _setup_logging(log_path: str, log_level: str) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    # logger keeps DEBUG; the handler level decides what reaches the file
    logger.setLevel(logging.DEBUG)
    fh = RotatingFileHandler(log_path, maxBytes=2000000, backupCount=2, encoding='utf-8')
    lvl = logging.getLevelName(log_level.upper())
    fh.setLevel(lvl if isinstance(lvl, int) else logging.ERROR)
    fh.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(message)s'))
    logger.addHandler(fh)
    return logger


def build_application(session: TodoSession, cfg: Config, theme_presets: Optional[List[ThemePreset]] = None) -> Application:
    theme_presets = theme_presets or [ThemePreset(name="Default", style=dict(BASE_THEME_STYLE))]
    ui_state = load_ui_state(cfg.state_file)
    current_theme = _theme_index(theme_presets, ui_state.get('theme'))
    if current_theme is None:
        current_theme = _theme_index(theme_presets, cfg.theme) or 0
    app: Optional[Application] = None

    def remember() -> None:
        save_ui_state(cfg.state_file, {
            'sort_mode': session.sort_mode.name,
            'theme': theme_presets[current_theme].name,
        })

    def apply_theme(index: int) -> None:
        nonlocal current_theme
        if not (0 <= index < len(theme_presets)):
            return
        current_theme = index
        if app is not None:
            app.style = Style.from_dict(theme_presets[index].style)
        session.status_line = f"Theme: {theme_presets[index].name}"
        remember()

    kb = build_key_bindings(session, on_exit=remember, on_theme=apply_theme, theme_count=len(theme_presets))
    app = Application(
        layout=build_layout(session),
        key_bindings=kb,
        full_screen=True,
        style=Style.from_dict(theme_presets[current_theme].style),
    )
    return app


def run_ui(session: TodoSession, cfg: Config) -> None:
    """Full-screen modal list editor; returns when the user quits."""
    log_path = cfg.log_file or os.path.join(os.path.dirname(os.path.abspath(__file__)), 'lazy_todo.log')
    logger = _setup_logging(log_path, cfg.log_level)
    session.logger = logger
    theme_presets = _load_theme_presets(Path(__file__).resolve().parent / "themes")
    app = build_application(session, cfg, theme_presets)
    logger.info("session start file=%s tasks=%d", session.store.path, len(session.store))
    app.run()
    if session.unsynced:
        logger.error("exiting with unsaved changes for %s", session.store.path)


# -----------------------------
# CLI
# -----------------------------
def _resolve_config(args: argparse.Namespace) -> Config:
    path = args.config
    if path is None and os.path.isfile(DEFAULT_CONFIG_PATH):
        path = DEFAULT_CONFIG_PATH
    cfg = load_config(path) if path else Config()
    if args.file:
        cfg.data_file = os.path.expanduser(args.file)
    if args.log_level:
        cfg.log_level = args.log_level.upper()
    return cfg


def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser(description="Terminal to-do list with sub-tasks")
    ap.add_argument("--config", help="Path to YAML config (default ~/.lazy_todo.yml if present)")
    ap.add_argument("--file", help="Path to the task file (default ./todos.json)")
    ap.add_argument("--log-level", help="File log level (DEBUG, INFO, WARNING, ERROR)")
    ap.add_argument("--no-ui", action="store_true", help="Print a one-line summary and exit")
    args = ap.parse_args(argv)

    try:
        cfg = _resolve_config(args)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"Failed to load config: {e}", file=sys.stderr)
        sys.exit(2)

    try:
        store = TaskStore.load(cfg.data_file)
    except TaskStoreError as e:
        print(f"{e}\nFix or move the file and start again.", file=sys.stderr)
        sys.exit(2)

    if args.no_ui:
        done_ct = sum(1 for t in store.tasks if t.done)
        sub_ct = sum(len(t.subtasks) for t in store.tasks)
        print(f"Tasks: {len(store)} (done {done_ct}, sub-tasks {sub_ct})")
        return

    session = TodoSession(
        store,
        double_press_ms=cfg.double_press_ms,
        undo_limit=cfg.undo_limit,
        sort_mode=_sort_mode_from_state(load_ui_state(cfg.state_file)),
    )
    try:
        run_ui(session, cfg)
    except Exception as e:
        logging.getLogger(LOGGER_NAME).exception("terminal UI failed")
        print(f"Unable to run terminal UI: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
