"""
Visited-flag repository backed by SQLAlchemy/SQLite.
"""
from datetime import datetime
from typing import Dict, List
from sqlalchemy.orm import Session

from repositories.models import VisitedPlaceORM


class VisitedRepository:
    """Read and upsert visited flags keyed by place identity."""

    def get_flags(self, session: Session, place_ids: List[str]) -> Dict[str, bool]:
        rows = (
            session.query(VisitedPlaceORM)
            .filter(VisitedPlaceORM.place_id.in_(place_ids))
            .all()
        )
        return {row.place_id: bool(row.visited) for row in rows}

    def set_flag(self, session: Session, place_id: str, visited: bool) -> None:
        orm = session.get(VisitedPlaceORM, place_id)
        if orm is None:
            orm = VisitedPlaceORM(place_id=place_id)
        orm.visited = bool(visited)
        orm.updated_at = datetime.utcnow()
        session.add(orm)
        session.commit()
