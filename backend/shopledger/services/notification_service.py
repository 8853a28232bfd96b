# Overview: Outbound receipt/invoice delivery collaborator.

from __future__ import annotations

from flask import current_app


NOTIFIER_EXTENSION_KEY = "shopledger.notifier"


class Notifier:
    """
    Receives a fully resolved receipt/invoice payload after a sale commits.

    Implementations print, email or queue the document. Raising is allowed;
    the caller treats delivery as best-effort.
    """

    def deliver(self, receipt: dict, recipient: str | None = None) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Default notifier: records the delivery in the application log."""

    def deliver(self, receipt: dict, recipient: str | None = None) -> None:
        document = receipt.get("invoice_number") or receipt.get("receipt_number")
        current_app.logger.info(
            "Receipt %s ready for delivery (recipient=%s, total=%s, lines=%d)",
            document,
            recipient or "-",
            receipt.get("total_cents"),
            len(receipt.get("lines") or []),
        )


def install_notifier(app, notifier: Notifier) -> None:
    app.extensions[NOTIFIER_EXTENSION_KEY] = notifier


def get_notifier() -> Notifier:
    notifier = current_app.extensions.get(NOTIFIER_EXTENSION_KEY)
    if notifier is None:
        notifier = LogNotifier()
        current_app.extensions[NOTIFIER_EXTENSION_KEY] = notifier
    return notifier
