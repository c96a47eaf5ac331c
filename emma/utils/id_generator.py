import uuid


def generate_approval_request_id() -> str:
    """
    Ex: APR-3f1c2b9e8a7d4c6b9e0f1a2b3c4d5e6f
    """
    return f"APR-{uuid.uuid4().hex}"


def generate_uuid() -> str:
    return str(uuid.uuid4())
