import random
import string
import time

_BASE36 = string.digits + string.ascii_lowercase


def random_base36(length: int = 6) -> str:
    return "".join(random.choice(_BASE36) for _ in range(length))


def new_id() -> str:
    # ms timestamp + random suffix; neither cryptographic nor strictly monotonic
    return f"{int(time.time() * 1000)}-{random_base36()}"


def donation_reference() -> str:
    return "DON-" + random_base36().upper()


def order_reference() -> str:
    return "RC-" + random_base36(8).upper()


def upload_filename(ext: str = "") -> str:
    return f"{int(time.time() * 1000)}-{random.randint(0, 10**6)}{ext}"
