# PgResilience - Database Operations & Resilience Toolkit
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Base Pydantic model configuration for every result returned to callers.

Results are reports: once produced they are never mutated, so every model is
frozen and rejects unknown fields.
"""

from beartype import beartype
from pydantic import BaseModel, ConfigDict


@beartype
class BaseModelConfig(BaseModel):
    """Base model with strict configuration for all public results.

    Enforces:
    - Immutability (frozen=True)
    - No extra fields allowed (extra="forbid")
    - Validation of defaults
    - Automatic whitespace stripping
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_assignment=True,
        str_strip_whitespace=True,
        validate_default=True,
    )
