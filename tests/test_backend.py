import logging

from backend import RealtimeBackend, records_from_value


class FakeResponse:
    def __init__(self, value):
        self.value = value

    def val(self):
        return self.value


class FakeStream:
    def __init__(self, handler):
        self.handler = handler
        self.closed = False

    def close(self):
        self.closed = True


class FakeDatabase:
    """Mimics pyrebase's chained query builder"""

    def __init__(self, store, calls):
        self.store = store
        self.calls = calls
        self.path = None

    def child(self, path):
        self.path = path
        return self

    def order_by_child(self, field):
        self.calls.append(("order_by_child", self.path, field))
        return self

    def limit_to_last(self, n):
        self.calls.append(("limit_to_last", self.path, n))
        return self

    def get(self, token=None):
        self.calls.append(("get", self.path, token))
        return FakeResponse(self.store.get(self.path))

    def set(self, data, token=None):
        self.calls.append(("set", self.path, data))

    def update(self, data, token=None):
        self.calls.append(("update", self.path, data))

    def push(self, data, token=None):
        self.calls.append(("push", self.path, data))
        return {"name": "-Nabc"}

    def stream(self, handler, token=None):
        if self.store.get("__stream_error__"):
            raise ConnectionError("stream refused")
        stream = FakeStream(handler)
        self.calls.append(("stream", self.path, stream))
        return stream


class FakeFirebase:
    def __init__(self):
        self.store = {}
        self.calls = []

    def database(self):
        return FakeDatabase(self.store, self.calls)


def make_backend():
    firebase = FakeFirebase()
    return firebase, RealtimeBackend(firebase, id_token="tok")


def test_records_from_value():
    assert records_from_value(None) == []
    assert records_from_value([]) == []
    assert records_from_value({"-a": {"x": 1}, "-b": {"x": 2}}) == [{"x": 1}, {"x": 2}]
    assert records_from_value([None, {"x": 1}, "junk"]) == [{"x": 1}]


def test_basic_operations_strip_slashes_and_pass_token():
    firebase, backend = make_backend()
    firebase.store["deviceData/esp-a"] = {"moisture": 40}

    assert backend.get_once("/deviceData/esp-a/") == {"moisture": 40}
    backend.write("deviceData/esp-a/commands", {"action": "ON"})
    backend.merge("deviceData/esp-a/settings", {"checkInterval": 5})
    assert backend.push_new("deviceData/esp-a/alerts", {"type": "x"}) == "-Nabc"

    assert firebase.calls[0] == ("get", "deviceData/esp-a", "tok")
    assert ("set", "deviceData/esp-a/commands", {"action": "ON"}) in firebase.calls
    assert ("update", "deviceData/esp-a/settings", {"checkInterval": 5}) in firebase.calls


def test_query_ordered_limited_to_last():
    firebase, backend = make_backend()
    firebase.store["deviceData/esp-a/history"] = {"-1": {"timestamp": 2}, "-2": {"timestamp": 1}}
    records = backend.query_ordered_limited_to_last("deviceData/esp-a/history", "timestamp", 20)
    assert records == [{"timestamp": 2}, {"timestamp": 1}]
    assert ("order_by_child", "deviceData/esp-a/history", "timestamp") in firebase.calls
    assert ("limit_to_last", "deviceData/esp-a/history", 20) in firebase.calls


def test_subscribe_delivers_root_put_and_refetches_patches():
    firebase, backend = make_backend()
    received = []
    errors = []
    sub = backend.subscribe("deviceData/esp-a", received.append, errors.append)
    stream = [c for c in firebase.calls if c[0] == "stream"][0][2]

    stream.handler({"event": "put", "path": "/", "data": {"moisture": 40}})
    firebase.store["deviceData/esp-a"] = {"moisture": 41, "valveStatus": "ON"}
    stream.handler({"event": "patch", "path": "/", "data": {"valveStatus": "ON"}})
    assert received == [{"moisture": 40}, {"moisture": 41, "valveStatus": "ON"}]
    assert errors == []

    sub.close()
    sub._closer.join(timeout=1)
    assert stream.closed
    stream.handler({"event": "put", "path": "/", "data": {"moisture": 1}})
    assert len(received) == 2
    sub.close()


def test_subscribe_failure_reports_error():
    firebase, backend = make_backend()
    firebase.store["__stream_error__"] = True
    errors = []
    sub = backend.subscribe("deviceData/esp-a", lambda v: None, errors.append)
    assert isinstance(errors[0], ConnectionError)
    sub.close()
    assert sub.closed


def test_failing_handler_is_logged_not_raised(caplog):
    firebase, backend = make_backend()

    def on_data(value):
        raise TypeError("bad record")

    backend.subscribe("deviceData/esp-a", on_data, lambda e: None)
    stream = [c for c in firebase.calls if c[0] == "stream"][0][2]
    with caplog.at_level(logging.ERROR):
        stream.handler({"event": "put", "path": "/", "data": {"moisture": 40}})
    assert "bad record" in caplog.text
