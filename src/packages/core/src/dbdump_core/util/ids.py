"""ID generation utilities."""
import uuid


def generate_id() -> str:
    """Generate a 12 character hex job id."""
    return uuid.uuid4().hex[:12]
