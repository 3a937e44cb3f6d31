"""
Content Fingerprinting

Deterministic cache key for an analysis request. Two requests share a
fingerprint exactly when their raw text and output-affecting options are
equal; nothing else (request IDs, client hashes) contributes.
"""

import hashlib
import json

from core.models import AnalysisOptions


def canonical_payload(text: str, options: AnalysisOptions) -> str:
    """
    Serialize text and options canonically.

    Keys are sorted and separators compact so that equal inputs always
    produce byte-identical payloads.
    """
    key_data = {"content": text, "options": options.fingerprint_fields()}
    return json.dumps(key_data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def fingerprint(text: str, options: AnalysisOptions) -> str:
    """
    Compute the content fingerprint.

    The text is hashed as-is; whitespace differences produce different
    fingerprints.

    Returns:
        64-character lowercase hex SHA-256 digest
    """
    return hashlib.sha256(canonical_payload(text, options).encode("utf-8")).hexdigest()


__all__ = ["fingerprint", "canonical_payload"]
