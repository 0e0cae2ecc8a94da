from __future__ import annotations

# Version stamped into every EnhancedResult metadata block.
VALIDATION_VERSION = "2.0.0"
# Version of the record schemas; also part of the validator cache key.
SCHEMA_VERSION = "1.0.0"

# Marker carried by synthesized placeholder values (reasoning / ai_feedback).
FALLBACK_MARKER = "recovery fallback"
