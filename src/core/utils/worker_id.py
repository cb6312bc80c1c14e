"""Client identifiers for broker connections."""

from coolname import generate_slug


def generate_worker_id(prefix: str = "") -> str:
    """Generate a memorable worker id, e.g. 'eventstore-brave-golden-tiger'.

    Used as the broker client id when none is configured, so concurrent
    workers remain distinguishable in broker logs.
    """
    slug = generate_slug(3)
    return f"{prefix}-{slug}" if prefix else slug
