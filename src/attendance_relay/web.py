"""Flask webhook server: Telegram updates and the class reminder trigger"""
import hmac
import logging
from typing import Optional

from flask import Flask, jsonify, request

from .models import ReminderOutcome, ReminderResult

logger = logging.getLogger(__name__)


class RelayWebServer:
    """HTTP surface for webhook deployments

    The runtime must provide handle_update(dict) and trigger_reminders(force)
    (see RelayApplication).
    """

    def __init__(self, runtime, cron_secret: Optional[str] = None, host: str = "0.0.0.0", port: int = 8080):
        self.runtime = runtime
        self.cron_secret = cron_secret
        self.host = host
        self.port = port
        self.app = Flask(__name__)
        self._setup_routes()

    def _check_secret(self, secret: Optional[str]) -> bool:
        if not self.cron_secret:
            return True
        return hmac.compare_digest(secret or "", self.cron_secret)

    def _setup_routes(self):
        """Setup all Flask routes"""
        app = self.app

        @app.route('/')
        def index():
            return "OK", 200

        @app.route('/api/telegram', methods=['GET', 'POST'])
        def telegram_webhook():
            # GET shows OK in a browser
            if request.method != 'POST':
                return "OK", 200

            data = request.get_json(force=True, silent=True)
            if not isinstance(data, dict):
                logger.warning("Ignoring malformed webhook body")
                return "OK", 200

            # Always 200 so Telegram doesn't retry
            try:
                self.runtime.handle_update(data)
            except Exception as e:
                logger.error(f"telegram webhook error: {e}")
            return "OK", 200

        @app.route('/api/class-reminders', methods=['GET', 'POST'])
        def class_reminders():
            secret = request.args.get('secret')
            force = request.args.get('force') == '1'
            if not self._check_secret(secret):
                return jsonify({"ok": False, "error": "unauthorized"}), 401

            try:
                result = self.runtime.trigger_reminders(force=force)
            except Exception as e:
                logger.error(f"class-reminders error: {e}")
                result = ReminderResult(outcome=ReminderOutcome.ERROR, error=str(e) or "unknown error")
            return jsonify(result.to_dict()), 200

    def run(self):
        """Serve until interrupted (blocking)"""
        logger.info(f"🌐 Webhook server listening on http://{self.host}:{self.port}")
        self.app.run(host=self.host, port=self.port, threaded=True, use_reloader=False)
