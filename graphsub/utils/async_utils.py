import threading
from flask import current_app

def run_in_background(fn, *args, **kwargs):
    """Run ``fn`` on a daemon thread inside the current app's context."""
    app = current_app._get_current_object()

    def _target():
        with app.app_context():
            try:
                fn(*args, **kwargs)
            except Exception:
                app.logger.exception("❌ Background task failed")
    t = threading.Thread(target=_target, daemon=True)
    t.start()
    return t
