"""Shared schema keys to avoid magic strings across policyvault modules."""

from __future__ import annotations

# Structured analysis keys (owned by the analysis collaborator)
K_SUMMARY = "summary"
K_SCORE = "score"
K_DATA_COLLECTED = "data_collected"
K_THIRD_PARTY_SHARING = "third_party_sharing"
K_USER_RIGHTS = "user_rights"
K_KEY_FINDINGS = "key_findings"
K_CATEGORY = "category"
K_SEVERITY = "severity"
