from __future__ import annotations

from revision_api.db.models import Base

__all__ = ["Base"]
