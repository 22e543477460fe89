# app/services/claim_code.py
import hashlib
import secrets
from datetime import datetime
from typing import Optional

from app.core.seed import SeedData


def generate_claim_code(
    seed: Optional[SeedData],
    drop_id: str,
    user_id: str,
    now: datetime,
) -> str:
    """
    Build a claim code of the form CLAIM-XXXX-XXXX-XXXX.

    Hashes seed, drop, user and the current epoch milliseconds; without a
    seed the code is 16 random hex characters instead.
    """
    if seed is None:
        return "CLAIM-" + secrets.token_hex(8).upper()

    epoch_ms = int(now.timestamp() * 1000)
    digest = hashlib.sha256(f"{seed.seed}-{drop_id}-{user_id}-{epoch_ms}".encode()).hexdigest()
    code = digest[:12].upper()
    return f"CLAIM-{code[0:4]}-{code[4:8]}-{code[8:12]}"
