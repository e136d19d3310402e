"""
CivicWorks Workflow Engine
Command receipts for idempotent retries.

One row per successfully applied command, keyed by the caller's request id.
A retried command with the same id gets the stored response back instead of
being applied again.
"""

import json
from datetime import datetime, timezone

from civicworks.models import db


class CommandReceipt(db.Model):
    __tablename__ = "command_receipts"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.String(120), nullable=False, unique=True)
    command = db.Column(db.String(60), nullable=False)
    actor = db.Column(db.String(150), nullable=False)
    status_code = db.Column(db.Integer, nullable=False, default=200)
    response_json = db.Column(db.Text, nullable=False, default="{}")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    @property
    def response(self) -> dict:
        return json.loads(self.response_json or "{}")

    def __repr__(self):
        return f"<CommandReceipt {self.request_id} {self.command}>"
