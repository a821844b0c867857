from certbatch.quota.gate import (
    GenerationDecision,
    QuotaGate,
    QuotaSnapshot,
    SendDecision,
    daily_send_key,
    generation_key,
)

__all__ = [
    "GenerationDecision",
    "QuotaGate",
    "QuotaSnapshot",
    "SendDecision",
    "daily_send_key",
    "generation_key",
]
