from datetime import datetime, timezone
from uuid import UUID

TABLE_NAMES = (
    "profiles",
    "accounts",
    "cards",
    "categories",
    "transactions",
    "fixed_bills",
    "budgets",
    "offers",
    "spend_events",
    "sales",
    "work_sessions",
)


class InMemoryStore:
    def __init__(self) -> None:
        self.users: dict[UUID, dict] = {}
        self.user_credentials: dict[UUID, str] = {}
        self.tables: dict[str, dict[UUID, dict]] = {name: {} for name in TABLE_NAMES}

    def table(self, name: str) -> dict[UUID, dict]:
        try:
            return self.tables[name]
        except KeyError as exc:
            raise KeyError(f"unknown table: {name}") from exc

    @staticmethod
    def now() -> datetime:
        return datetime.now(timezone.utc)


store = InMemoryStore()
