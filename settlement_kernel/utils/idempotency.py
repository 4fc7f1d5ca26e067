"""
Idempotency key generation utilities.

Every outbox message carries a key derived from what caused it, so that
queuing the same effect twice collapses onto one row and a redelivered
message is recognized by the collaborator.
"""

from uuid import UUID


def generate_idempotency_key(
    kind: str,
    entity_id: UUID | str,
    event: str,
    discriminator: UUID | str | int | None = None,
) -> str:
    """
    Generate an idempotency key for a side effect.

    Format: kind:entity_id:event[:discriminator]

    Example:
        >>> generate_idempotency_key("notify", "p-1", "payment_approved", "u-9")
        'notify:p-1:payment_approved:u-9'
    """
    key = f"{kind}:{entity_id}:{event}"
    if discriminator is not None:
        key = f"{key}:{discriminator}"
    return key


def parse_idempotency_key(key: str) -> tuple[str, str, str, str | None]:
    """
    Parse an idempotency key into its components.

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 3)
    if len(parts) < 3:
        raise ValueError(f"Invalid idempotency key format: {key}")
    discriminator = parts[3] if len(parts) == 4 else None
    return parts[0], parts[1], parts[2], discriminator
