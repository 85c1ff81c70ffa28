from typing import List
from sqlalchemy import select, func
from database.models.api_usage import ApiUsage
from database.repositories.base_repository import BaseRepository


class ApiUsageRepository(BaseRepository[ApiUsage]):
    """
    Per-hour request counters for each provider endpoint.
    """
    def __init__(self, engine=None):
        super().__init__(model_class=ApiUsage, engine=engine)

    def increment(self, service: str, endpoint: str, date_hour: str) -> None:
        stmt = self.dialect_insert(ApiUsage).values(
            service=service,
            endpoint=endpoint,
            date_hour=date_hour,
            requests_count=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=['service', 'endpoint', 'date_hour'],
            set_={'requests_count': ApiUsage.__table__.c.requests_count + 1},
        )
        with self.session() as session:
            session.execute(stmt)

    def get_usage(self, service: str) -> List[ApiUsage]:
        with self.session() as session:
            stmt = select(ApiUsage).where(ApiUsage.service == service).order_by(ApiUsage.date_hour)
            results = session.execute(stmt).scalars().all()
            session.expunge_all()
            return results

    def count(self) -> int:
        with self.session() as session:
            return session.execute(select(func.count()).select_from(ApiUsage)).scalar_one()
