from ideaboard.services.connection_state import ConnectionState


def test_defaults():
    state = ConnectionState()
    assert state.is_online is True
    assert state.has_unsaved_changes is False


def test_connection_listeners_fire_only_on_change():
    state = ConnectionState()
    seen = []
    state.on_connection_changed(seen.append)

    state.set_connection_state(True)
    state.set_connection_state(False)
    state.set_connection_state(False)
    state.set_connection_state(True)

    assert seen == [False, True]


def test_unsaved_flag_is_independent_of_connection():
    state = ConnectionState()
    connection, unsaved = [], []
    state.on_connection_changed(connection.append)
    state.on_unsaved_changes_changed(unsaved.append)

    state.set_has_unsaved_changes(True)
    state.set_connection_state(False)
    state.set_has_unsaved_changes(True)

    assert unsaved == [True]
    assert connection == [False]
    assert state.has_unsaved_changes is True


def test_unsubscribe_stops_notifications():
    state = ConnectionState()
    seen = []
    unsubscribe = state.on_connection_changed(seen.append)

    state.set_connection_state(False)
    unsubscribe()
    unsubscribe()
    state.set_connection_state(True)

    assert seen == [False]


def test_failing_listener_does_not_block_others():
    state = ConnectionState()
    seen = []

    def broken(_):
        raise RuntimeError("banner crashed")

    state.on_unsaved_changes_changed(broken)
    state.on_unsaved_changes_changed(seen.append)

    state.set_has_unsaved_changes(True)

    assert seen == [True]
    assert state.has_unsaved_changes is True
