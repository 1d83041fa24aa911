from types import SimpleNamespace


class DummyApp:
    def __init__(self):
        self.exit_calls = 0

    def exit(self):
        self.exit_calls += 1

    def invalidate(self):
        pass


def dummy_event(data='', app=None):
    return SimpleNamespace(data=data, app=app or DummyApp())


def find_binding(kb, key):
    """Return the binding registered for exactly ``key``."""
    for binding in kb.bindings:
        if binding.keys == (key,):
            return binding
    raise AssertionError(f'Binding for {key!r} not found')


def text_of(fragments):
    return ''.join(text for _, text in fragments)


def styles_for(fragments, needle):
    """Styles of every fragment whose text contains ``needle``."""
    return [style for style, text in fragments if needle in text]


__all__ = ['DummyApp', 'dummy_event', 'find_binding', 'text_of', 'styles_for']
