"""In-process real-time channels: one bounded queue per connected client, grouped by user."""
from __future__ import annotations

import queue
import threading

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

TOKEN_SALT = "grievance-notification-channel"


class Channel:
    """A single open client connection joined to its user's room."""

    def __init__(self, user_id: str, maxsize: int = 100) -> None:
        self.user_id = user_id
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def put(self, message: dict) -> None:
        # A slow reader loses its oldest messages, never blocks the publisher.
        while True:
            try:
                self._queue.put_nowait(message)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    continue

    def get(self, timeout: float | None = None) -> dict | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[dict]:
        messages = []
        while True:
            try:
                messages.append(self._queue.get_nowait())
            except queue.Empty:
                return messages


class NotificationHub:
    """Registry of open channels keyed by user id.

    Delivery is best-effort: publishing to a user with no open channel is a
    silent no-op and nothing is persisted for later replay.
    """

    def __init__(self, queue_size: int = 100) -> None:
        self.queue_size = queue_size
        self._lock = threading.Lock()
        self._rooms: dict[str, list[Channel]] = {}

    def init_app(self, app) -> None:
        self.queue_size = int(app.config.get("REALTIME_QUEUE_SIZE", self.queue_size))
        app.extensions["notification_hub"] = self

    def connect(self, user_id: str) -> Channel:
        channel = Channel(user_id, maxsize=self.queue_size)
        with self._lock:
            self._rooms.setdefault(user_id, []).append(channel)
        return channel

    def disconnect(self, channel: Channel) -> None:
        with self._lock:
            room = self._rooms.get(channel.user_id)
            if not room:
                return
            if channel in room:
                room.remove(channel)
            if not room:
                self._rooms.pop(channel.user_id, None)

    def publish(self, user_id: str, message: dict) -> bool:
        with self._lock:
            room = list(self._rooms.get(user_id, ()))
        for channel in room:
            channel.put(message)
        return bool(room)

    def connected_users(self) -> list[str]:
        with self._lock:
            return sorted(self._rooms)

    def close_all(self) -> None:
        with self._lock:
            self._rooms.clear()


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=TOKEN_SALT)


def issue_channel_token(user_id: str) -> str:
    return _serializer().dumps({"user_id": user_id})


def verify_channel_token(token: str | None) -> str | None:
    """Return the user id carried by a valid, unexpired token, otherwise None."""
    if not token:
        return None
    max_age = int(current_app.config.get("REALTIME_TOKEN_MAX_AGE", 3600))
    try:
        data = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        current_app.logger.info("Expired notification channel token rejected")
        return None
    except BadSignature:
        current_app.logger.warning("Invalid notification channel token rejected")
        return None
    if not isinstance(data, dict):
        return None
    return data.get("user_id")
