import logging
import threading

from flask import current_app, has_app_context

logger = logging.getLogger(__name__)


class AutosaveScheduler:
    """
    Debounces autosave writes per (response_id, question_id).

    Each call to schedule() cancels the pending timer for the same key and
    starts a new one, so a burst of edits produces a single write carrying the
    last value. Timers fire on their own thread inside an app context.
    """

    def __init__(self, app=None, delay=2.0, timer_factory=threading.Timer):
        self.delay = delay
        self.timer_factory = timer_factory
        self._pending = {}
        self._lock = threading.Lock()
        self.app = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.app = app
        self.delay = app.config.get('AUTOSAVE_DEBOUNCE_SECONDS', self.delay)
        app.extensions['autosave'] = self

    def schedule(self, key, func, *args, **kwargs):
        with self._lock:
            pending = self._pending.pop(key, None)
            if pending is not None:
                pending[0].cancel()

            timer = self.timer_factory(self.delay, self._fire, args=(key,))
            timer.daemon = True
            self._pending[key] = (timer, func, args, kwargs)
            timer.start()
        return timer

    def _fire(self, key):
        with self._lock:
            pending = self._pending.pop(key, None)
        if pending is None:
            return
        _, func, args, kwargs = pending
        self._run(key, func, args, kwargs)

    def _run(self, key, func, args, kwargs):
        try:
            if has_app_context() and current_app._get_current_object() is self.app:
                func(*args, **kwargs)
            else:
                with self.app.app_context():
                    func(*args, **kwargs)
        except Exception:
            logger.exception("Error auto-saving %s", key)

    def flush(self):
        """Runs every pending write now, in scheduling order."""
        with self._lock:
            pending = list(self._pending.items())
            self._pending.clear()
        for key, (timer, func, args, kwargs) in pending:
            timer.cancel()
            self._run(key, func, args, kwargs)

    def cancel_matching(self, predicate):
        """Drops pending writes whose key satisfies `predicate`. Returns how many."""
        with self._lock:
            keys = [key for key in self._pending if predicate(key)]
            for key in keys:
                self._pending.pop(key)[0].cancel()
        return len(keys)

    def cancel_all(self):
        with self._lock:
            for timer, *_ in self._pending.values():
                timer.cancel()
            self._pending.clear()

    @property
    def pending_count(self):
        with self._lock:
            return len(self._pending)
