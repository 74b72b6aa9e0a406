import pytest


class FakeSubscription:
    def __init__(self, path, on_data, on_error):
        self.path = path
        self.on_data = on_data
        self.on_error = on_error
        self.closed = False

    def close(self):
        self.closed = True


class FakeBackend:
    """In-memory stand-in for RealtimeBackend"""

    def __init__(self):
        self.data = {}
        self.history = {}
        self.writes = []
        self.queries = []
        self.subscriptions = []
        self.write_error = None
        self.query_error = None
        self._keys = 0

    def subscribe(self, path, on_data, on_error):
        sub = FakeSubscription(path, on_data, on_error)
        self.subscriptions.append(sub)
        return sub

    def open_subscriptions(self, path):
        return [s for s in self.subscriptions if s.path == path and not s.closed]

    def emit(self, path, value):
        for sub in self.open_subscriptions(path):
            sub.on_data(value)

    def fail(self, path, error):
        for sub in self.open_subscriptions(path):
            sub.on_error(error)

    def get_once(self, path):
        return self.data.get(path)

    def write(self, path, value):
        if self.write_error:
            raise self.write_error
        self.writes.append(("write", path, value))
        self.data[path] = value

    def merge(self, path, partial):
        if self.write_error:
            raise self.write_error
        self.writes.append(("merge", path, partial))
        self.data[path] = {**(self.data.get(path) or {}), **partial}

    def push_new(self, path, value):
        self._keys += 1
        key = f"-N{self._keys:04d}"
        self.writes.append(("push", path, value))
        self.data.setdefault(path, {})[key] = value
        return key

    def query_ordered_limited_to_last(self, path, order_field, limit):
        self.queries.append((path, order_field, limit))
        if self.query_error:
            raise self.query_error
        records = self.history.get(path, [])
        return list(records[-limit:])


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def clock():
    return FakeClock()
