import lazy_todo as lt


def make_task(title='Task', **overrides) -> lt.Task:
    base = dict(
        title=title,
        content='',
        priority='low',
        date_time='2024-01-10T10:00:00+00:00',
        deadline='',
        done=False,
    )
    base.update(overrides)
    return lt.Task(**base)


def make_parent(title='Parent', subtitles=('one', 'two'), expanded=True, **overrides) -> lt.Task:
    task = make_task(title, expanded=expanded, **overrides)
    for sub in subtitles:
        task.add_subtask(sub)
    return task


def press(session, keys, start=0.0, step=1.0):
    """Feed keys one by one with timestamps far enough apart to avoid double-space detection."""
    now = start
    for key in keys:
        session.handle_key(key, now=now)
        now += step
    return now


def type_text(session, text):
    for ch in text:
        session.handle_key(ch, now=0.0)


__all__ = ['make_task', 'make_parent', 'press', 'type_text']
