# app.py
import logging
import os
from datetime import datetime, timezone

from flask import Flask, jsonify, request

from notifications.config import configure_logging
from notifications.errors import NotificationError, ValidationError
from notifications.models import EMAIL_RE, NotificationRequest
from notifications.service import get_service

configure_logging(os.getenv("LOG_LEVEL", "INFO"))
LOGGER = logging.getLogger(__name__)

app = Flask(__name__)

APP_MODE = os.environ.get("APP_MODE", "prod").lower()

# Inbound camelCase names accepted on PATCH, mapped onto record columns.
UPDATE_FIELD_ALIASES = {
    "eventEmitted": "event_emitted",
    "deliveryChannel": "delivery_channel",
    "notificationType": "notification_type",
    "userId": "user_id",
}


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


# ------------------------------- Error handling -------------------------------
@app.errorhandler(NotificationError)
def handle_notification_error(exc: NotificationError):
    if exc.status_code >= 500:
        LOGGER.error("%s %s failed: %s (%s)", request.method, request.path, exc.message, exc.code)
    payload = {
        "code": exc.status_code,
        "error": exc.code,
        "message": exc.message,
        "path": request.path,
        "method": request.method,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if exc.details is not None:
        payload["details"] = exc.details
    return jsonify(payload), exc.status_code


@app.get("/healthz")
def healthz():
    return {"ok": True, "mode": APP_MODE}, 200


# ------------------------------- Notifications -------------------------------
@app.post("/notification")
def create_notification():
    notification = NotificationRequest.from_payload(_json_body())
    result = get_service().orchestrator.submit(notification)
    return jsonify(result), 201


@app.get("/notification")
def list_notifications():
    limit = _int_arg("limit", 10)
    offset = _int_arg("offset", 0)
    return jsonify(get_service().records.find_all(limit=limit, offset=offset))


@app.get("/notification/<record_id>")
def get_notification(record_id):
    return jsonify(get_service().records.find_by_id(record_id))


@app.get("/notification/user/<user_id>")
def get_user_notifications(user_id):
    return jsonify(get_service().records.find_by_user_id(user_id))


@app.patch("/notification/<record_id>")
def update_notification(record_id):
    body = _json_body()
    fields = {UPDATE_FIELD_ALIASES.get(name, name): value for name, value in body.items()}
    return jsonify(get_service().records.update_by_id(record_id, fields))


@app.patch("/notification/mark-read/<record_id>")
def mark_read(record_id):
    return jsonify(get_service().records.set_read_status(record_id, True))


@app.patch("/notification/mark-unread/<record_id>")
def mark_unread(record_id):
    return jsonify(get_service().records.set_read_status(record_id, False))


@app.delete("/notification/<record_id>")
def delete_notification(record_id):
    return jsonify({"message": get_service().records.delete_by_id(record_id)})


# ------------------------------- Direct provider sends -------------------------------
@app.post("/<provider>/sendEmail")
def send_email_direct(provider):
    body = _json_body()
    to = body.get("to")
    subject = body.get("subject")
    message = body.get("message")
    errors = []
    if not isinstance(to, str) or not EMAIL_RE.match(to):
        errors.append("to must be a valid email address")
    if not isinstance(subject, str) or not subject.strip():
        errors.append("subject must be a non-empty string")
    if not isinstance(message, str) or not message.strip():
        errors.append("message must be a non-empty string")
    if errors:
        raise ValidationError("Invalid send request", details=errors)

    get_service().router_for(provider.lower()).send(to, subject, message, body.get("html"))
    return jsonify({"message": "Email sent successfully"})


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")), debug=os.getenv("FLASK_ENV") != "production")
