"""
Domain events: cross-entity side effects as named signals.

Signals (blinker, the same library Flask's own request signals use):

    purchase_delivered  sender=PurchaseRequest, kwargs: actor
        Sent by the purchase pipeline when a purchase reaches DELIVERED.
        Material fulfillment listens and closes the originating request.

    materials_ready     sender=MaterialRequest, kwargs: actor
        Sent when a material request becomes FULFILLED or DELIVERED.
        The maintenance service listens and starts the linked schedule.

Receivers run synchronously inside the sender's transaction, so an exception
in a receiver rolls back the whole command.

Usage:
    from civicworks.services.events import purchase_delivered

    @purchase_delivered.connect
    def _on_delivered(purchase, actor, **extra):
        ...
"""

from blinker import Namespace

_signals = Namespace()

purchase_delivered = _signals.signal("purchase-delivered")
materials_ready = _signals.signal("materials-ready")
