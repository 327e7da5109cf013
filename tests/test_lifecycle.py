from needle.lifecycle import Lifecycle


def _hook_a(ctx):
    return None


def _hook_b(ctx):
    return None


def _hook_c(ctx):
    return None


def test_hooks_kept_in_order():
    lc = Lifecycle()
    lc.on_start(_hook_a)
    lc.on_start(_hook_b)
    lc.on_stop(_hook_c)
    assert lc.start_hooks == [_hook_a, _hook_b]
    assert lc.stop_hooks == [_hook_c]


def test_append_adds_other_hooks_after_own():
    first = Lifecycle()
    first.on_start(_hook_a)
    first.on_stop(_hook_a)
    second = Lifecycle()
    second.on_start(_hook_b)
    second.on_stop(_hook_c)

    first.append(second)

    assert first.start_hooks == [_hook_a, _hook_b]
    assert first.stop_hooks == [_hook_a, _hook_c]
    assert second.start_hooks == [_hook_b]


def test_append_none_is_ignored():
    lc = Lifecycle()
    lc.on_start(_hook_a)
    lc.append(None)
    assert lc.start_hooks == [_hook_a]
    assert lc.stop_hooks == []


def test_append_copies_rather_than_aliases():
    first = Lifecycle()
    second = Lifecycle()
    second.on_start(_hook_a)
    first.append(second)
    second.on_start(_hook_b)
    assert first.start_hooks == [_hook_a]


def test_new_lifecycles_do_not_share_lists():
    one = Lifecycle()
    two = Lifecycle()
    one.on_stop(_hook_a)
    assert two.stop_hooks == []