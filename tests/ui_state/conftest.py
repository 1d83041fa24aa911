from types import SimpleNamespace

import pytest

import lazy_todo as lt

from ..helpers import make_parent, make_task


@pytest.fixture
def ui_context(tmp_path):
    store = lt.TaskStore(str(tmp_path / 'todos.json'), [
        make_parent('Write report', subtitles=('outline', 'draft'), priority='high', deadline='2024-02-01'),
        make_task('Buy milk', content='two litres'),
    ])
    session = lt.TodoSession(store)
    exits = []
    themes = []
    kb = lt.build_key_bindings(
        session,
        on_exit=lambda: exits.append(True),
        on_theme=themes.append,
        theme_count=2,
    )
    return SimpleNamespace(store=store, session=session, kb=kb, exits=exits, themes=themes)
