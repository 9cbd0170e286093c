import uuid
from functools import wraps
from ..env import LOG
from ..telemetry.log import bound_logging_vars

SANDBOX_ID_LENGTH = 8


def generate_temp_id() -> str:
    return uuid.uuid4().hex


def generate_sandbox_id() -> str:
    """Short, DNS-label-safe sandbox id.

    Truncation makes collisions possible; callers retry on a pod name conflict.
    """
    return uuid.uuid4().hex[:SANDBOX_ID_LENGTH]


def track_process(func):
    @wraps(func)
    async def wrapper(*args, **kwargs):
        func_name = func.__name__
        use_id = generate_temp_id()
        with bound_logging_vars(temp_id=use_id, func_name=func_name):
            LOG.debug(f"Enter {func_name}")
            try:
                return await func(*args, **kwargs)
            finally:
                LOG.debug(f"Exit {func_name}")

    return wrapper
