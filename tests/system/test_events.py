import logging

from compiler_sys.system import EventBus, WatchEvent


def test_emit_reaches_subscribers_of_that_event_only():
    bus = EventBus()
    adds, deletes = [], []
    bus.on(WatchEvent.FILE_ADD, adds.append)
    bus.on("fileDelete", deletes.append)

    bus.emit(WatchEvent.FILE_ADD, "/src/a.ts")

    assert adds == ["/src/a.ts"]
    assert deletes == []


def test_off_unsubscribes():
    bus = EventBus()
    seen = []
    off = bus.on(WatchEvent.DIR_ADD, seen.append)
    off()
    off()
    bus.emit(WatchEvent.DIR_ADD, "/src")
    assert seen == []
    assert bus.listener_count(WatchEvent.DIR_ADD) == 0


def test_failing_listener_does_not_stop_delivery(caplog):
    bus = EventBus()
    seen = []

    def broken(path):
        raise RuntimeError("listener bug")

    bus.on(WatchEvent.FILE_UPDATE, broken)
    bus.on(WatchEvent.FILE_UPDATE, seen.append)

    with caplog.at_level(logging.WARNING, logger="compiler_sys"):
        bus.emit(WatchEvent.FILE_UPDATE, "/a")

    assert seen == ["/a"]
    assert "listener bug" in caplog.text


def test_clear():
    bus = EventBus()
    bus.on(WatchEvent.FILE_ADD, lambda p: None)
    bus.clear()
    assert bus.listener_count(WatchEvent.FILE_ADD) == 0
