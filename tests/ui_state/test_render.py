from prompt_toolkit.data_structures import Point
from prompt_toolkit.layout import Layout

import lazy_todo as lt

from ..helpers import make_task
from .helpers import styles_for, text_of


def test_list_rows_show_marks_tree_and_progress(ui_context):
    session = ui_context.session
    session.store.tasks[0].subtasks[0].done = True
    frags = lt.build_list_fragments(session)
    text = text_of(frags)
    lines = text.split('\n')
    assert len(lines) == 4
    assert lines[0].startswith('▾ ✘: Write report')
    assert '| 2024-02-01' in lines[0]
    assert lines[0].endswith('| 50%')
    assert lines[1] == '    ├ ✔ outline'
    assert lines[2] == '    ├ ✘ draft'
    assert lines[3].startswith('  ✘: Buy milk')
    assert lines[3].endswith('| 0%')
    assert 'class:priority.high' in styles_for(frags, '●')[0]


def test_collapsed_parent_marker(ui_context):
    ui_context.session.store.tasks[0].expanded = False
    text = text_of(lt.build_list_fragments(ui_context.session))
    assert text.split('\n')[0].startswith('▸ ')
    assert 'outline' not in text


def test_selection_highlight_follows_cursor_and_hides_while_searching(ui_context):
    session = ui_context.session
    session.handle_key('j')
    frags = lt.build_list_fragments(session)
    selected = [text for style, text in frags if 'class:list.selected' in style]
    assert ''.join(selected) == '    ├ ✘ outline'
    session.start_search()
    frags = lt.build_list_fragments(session)
    assert not any('class:list.selected' in style for style, _ in frags)


def test_empty_list_messages(tmp_path):
    session = lt.TodoSession(lt.TaskStore(str(tmp_path / 'x.json'), []))
    assert 'No tasks yet' in text_of(lt.build_list_fragments(session))
    session = lt.TodoSession(lt.TaskStore(str(tmp_path / 'x.json'), [make_task('abc')]))
    session.start_search()
    session.handle_key('z')
    session.handle_key('enter')
    assert 'No matches' in text_of(lt.build_list_fragments(session))


def test_long_titles_are_truncated(tmp_path):
    session = lt.TodoSession(lt.TaskStore(str(tmp_path / 'x.json'), [make_task('x' * 100)]))
    text = text_of(lt.build_list_fragments(session, title_width=10))
    assert 'x' * 9 + '…' in text
    assert 'x' * 11 not in text


def test_truncate_respects_display_width():
    assert lt._sanitize_cell_text('line1\nline2') == 'line1 line2'
    assert lt._sanitize_cell_text(None) == ''
    truncated = lt._truncate('你好世界abc', 6)
    assert truncated.endswith('…')
    assert lt._display_width(truncated) <= 6
    assert lt._truncate('short', 10) == 'short'
    assert lt._truncate('anything', 0) == ''


def test_details_pane_for_task_and_subtask(ui_context):
    session = ui_context.session
    assert lt.build_details_fragments(session) == []
    session.handle_key('o')
    frags = lt.build_details_fragments(session)
    text = text_of(frags)
    assert 'Title: Write report' in text
    assert 'Priority: High' in text
    assert 'Deadline: 2024-02-01' in text
    assert '✘ Not Completed' in text
    assert 'Progress: 0%' in text
    assert any('class:details.cursor' in s for s in styles_for(frags, 'outline'))
    assert not any('class:details.cursor' in s for s in styles_for(frags, 'draft'))

    session.handle_key('j')
    session.handle_key('o')
    text = text_of(lt.build_details_fragments(session))
    assert 'Title: draft' in text
    assert 'Deadline: No Deadline' in text
    assert 'Progress' not in text


def test_details_pane_without_subtasks(ui_context):
    session = ui_context.session
    session.cursor = 3
    session.handle_key('o')
    text = text_of(lt.build_details_fragments(session))
    assert 'Content: two litres' in text
    assert 'press space to add' in text


def test_unknown_priority_in_details(tmp_path):
    session = lt.TodoSession(lt.TaskStore(str(tmp_path / 'x.json'), [make_task('x', priority='urgent')]))
    session.handle_key('o')
    assert 'Priority: Unknown' in text_of(lt.build_details_fragments(session))


def test_instructions_follow_mode(ui_context):
    session = ui_context.session
    assert lt.instructions_text(session).startswith('q: Quit')
    session.handle_key('a')
    for ch in 'Tea':
        session.handle_key(ch)
    assert lt.instructions_text(session) == 'Enter title: Tea'
    session.handle_key('enter')
    assert lt.instructions_text(session) == 'Enter content: '
    session.handle_key('enter')
    assert lt.instructions_text(session).startswith('Priority: Low')
    session.handle_key('j')
    assert lt.instructions_text(session).startswith('Priority: Medium')
    session.handle_key('enter')
    session.handle_key('9')
    assert lt.instructions_text(session) == 'Enter deadline: 9'
    session.handle_key('escape')
    session.handle_key('o')
    assert lt.instructions_text(session).startswith('q: Back | <space>: Add Subtask')
    session.handle_key(' ')
    session.handle_key('x')
    assert lt.instructions_text(session) == 'Enter subtask title: x'
    session.handle_key('escape')
    session.handle_key('o')
    assert lt.instructions_text(session) == 'q: Back | Enter: Toggle Subtask Done'
    session.handle_key('q')
    session.handle_key('q')
    session.start_search()
    assert 'Esc to cancel' in lt.instructions_text(session)


def test_title_and_status_bars(ui_context):
    session = ui_context.session
    assert text_of(lt.build_title_fragments(session)) == ' Lazy Todo - Sort Mode: Completion'
    assert text_of(lt.build_status_fragments(session)) == ' 2/2 tasks'
    session.unsynced = True
    session.status_line = 'Save failed: disk full'
    title = lt.build_title_fragments(session)
    assert title[-1] == ('class:title.unsynced', '  [unsaved]')
    assert lt.build_status_fragments(session) == [('class:status.error', ' Save failed: disk full')]
    session.status_line = 'Sort: Deadline'
    assert lt.build_status_fragments(session) == [('class:status', ' Sort: Deadline')]


def test_search_overlay_lists_live_results(ui_context):
    session = ui_context.session
    session.start_search()
    for ch in 'i':
        session.handle_key(ch)
    frags = lt.build_search_fragments(session)
    text = text_of(frags)
    assert text.startswith('Search: i\n')
    assert '✘: Write report' in text
    assert '✘: Buy milk' in text
    assert any('class:search.cursor' in s for s in styles_for(frags, 'Write report'))
    session.handle_key('down')
    frags = lt.build_search_fragments(session)
    assert any('class:search.cursor' in s for s in styles_for(frags, 'Buy milk'))
    session.handle_key('q')
    assert 'no matches' in text_of(lt.build_search_fragments(session))


def test_layout_wires_session(ui_context):
    session = ui_context.session
    layout = lt.build_layout(session)
    assert isinstance(layout, Layout)
    control = layout.current_window.content
    assert text_of(control.text()) == text_of(lt.build_list_fragments(session))
    session.handle_key('j')
    assert control.get_cursor_position() == Point(x=0, y=1)

    search_float = layout.container.floats[0]
    assert search_float.content.filter() is False
    session.start_search()
    assert search_float.content.filter() is True
