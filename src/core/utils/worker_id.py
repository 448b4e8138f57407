"""Worker ID generation using coolnames for memorable identifiers."""

from coolname import generate_slug


def generate_worker_id(prefix: str = "") -> str:
    """Generate a unique, memorable worker ID.

    Human-readable ids are easier to follow across interleaved log lines
    than hostnames or UUIDs when several workers share a consumer group.

    Args:
        prefix: Optional prefix (e.g., "sensemaker-worker")

    Returns:
        "prefix-word1-word2-word3" or "word1-word2-word3"

    Examples:
        >>> generate_worker_id("sensemaker-worker")
        'sensemaker-worker-swift-blue-falcon'
    """
    slug = generate_slug(3)

    if prefix:
        return f"{prefix}-{slug}"

    return slug
