"""
Realtime database client handle
Thin wrapper over a pyrebase app, constructed once and passed to the
reconciler, dispatcher and helpers instead of a module-level `db`
"""

import logging
import threading

import pyrebase

logger = logging.getLogger(__name__)


def connect(firebase_config, id_token=None):
    """Initialise pyrebase and return a RealtimeBackend for it"""
    firebase = pyrebase.initialize_app(firebase_config)
    return RealtimeBackend(firebase, id_token=id_token)


class Subscription:
    """Disposable handle returned by RealtimeBackend.subscribe"""

    def __init__(self, stream=None):
        self._stream = stream
        self._closer = None
        self.closed = False

    def close(self):
        if self.closed:
            return
        self.closed = True
        stream, self._stream = self._stream, None
        if stream is not None:
            # pyrebase joins the stream thread on close, and that thread may be
            # blocked in a callback waiting on the caller's lock
            self._closer = threading.Thread(target=_close_stream, args=(stream,), daemon=True)
            self._closer.start()


def _close_stream(stream):
    try:
        stream.close()
    except Exception as e:
        logger.debug("Stream close failed: %s", e)


class RealtimeBackend:
    """Key-value access to the Firebase realtime database.

    Every call builds a fresh pyrebase Database object: pyrebase keeps the
    child path as mutable state on the Database, so sharing one instance
    between the stream threads and the poll timer would mix paths.
    """

    def __init__(self, firebase, id_token=None):
        self._firebase = firebase
        self.id_token = id_token

    def _ref(self, path):
        return self._firebase.database().child(path.strip("/"))

    def subscribe(self, path, on_data, on_error):
        """Stream `path`, calling on_data(value) with the whole value on every change.

        on_error(exc) is called when the stream cannot be opened or an update
        cannot be read back. Returns a Subscription.
        """
        subscription = Subscription()

        def handler(message):
            if subscription.closed:
                return
            try:
                if message.get("event") == "put" and message.get("path") == "/":
                    value = message.get("data")
                else:
                    # patches and nested puts only carry the delta
                    value = self.get_once(path)
            except Exception as e:
                logger.warning("Stream update for %s failed: %s", path, e)
                on_error(e)
                return
            try:
                on_data(value)
            except Exception:
                logger.exception("Handler for %s failed", path)

        try:
            subscription._stream = self._ref(path).stream(handler, token=self.id_token)
        except Exception as e:
            logger.warning("Could not subscribe to %s: %s", path, e)
            on_error(e)
        return subscription

    def get_once(self, path):
        return self._ref(path).get(token=self.id_token).val()

    def write(self, path, value):
        self._ref(path).set(value, token=self.id_token)

    def merge(self, path, partial):
        self._ref(path).update(partial, token=self.id_token)

    def push_new(self, path, value):
        """Append to a collection and return the generated key"""
        result = self._ref(path).push(value, token=self.id_token)
        return result["name"]

    def query_ordered_limited_to_last(self, path, order_field, limit):
        """Return the last `limit` children of `path` ordered by `order_field`"""
        response = (
            self._ref(path)
            .order_by_child(order_field)
            .limit_to_last(limit)
            .get(token=self.id_token)
        )
        return records_from_value(response.val())


def records_from_value(value):
    """Flatten a collection value (dict keyed by push id, or list) into records"""
    if not value:
        return []
    if isinstance(value, dict):
        value = list(value.values())
    return [record for record in value if isinstance(record, dict)]
