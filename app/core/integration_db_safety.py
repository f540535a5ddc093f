from __future__ import annotations

import os
from dataclasses import dataclass

from sqlalchemy.engine import make_url

TEST_DB_MARKERS = ("test", "ci")
LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "::1", "postgres", "skill_evaluate_postgres"})
EXTRA_HOSTS_ENV = "EVALUATE_INTEGRATION_DB_HOSTS"


@dataclass(frozen=True, slots=True)
class IntegrationDbTarget:
    database_name: str
    host: str
    problems: tuple[str, ...]

    @property
    def is_safe(self) -> bool:
        return not self.problems


def allowed_hosts() -> frozenset[str]:
    raw = os.getenv(EXTRA_HOSTS_ENV, "")
    extra = {host.strip().lower() for host in raw.split(",") if host.strip()}
    return LOCAL_HOSTS | extra


def assess_integration_db(database_url: str) -> IntegrationDbTarget:
    parsed = make_url(database_url)
    db_name = (parsed.database or "").strip()
    host = (parsed.host or "").strip().lower()

    problems: list[str] = []
    if parsed.get_backend_name() != "postgresql":
        problems.append("selection store tests need PostgreSQL with pgvector")
    if not db_name:
        problems.append("database name is empty")
    elif not any(marker in db_name.lower().split("_") for marker in TEST_DB_MARKERS):
        problems.append("database name must carry a '_test' or '_ci' segment")
    if host not in allowed_hosts():
        problems.append(f"host is not local (extend with {EXTRA_HOSTS_ENV})")

    return IntegrationDbTarget(database_name=db_name, host=host, problems=tuple(problems))


def assert_safe_integration_db(database_url: str) -> None:
    target = assess_integration_db(database_url)
    if target.is_safe:
        return

    raise RuntimeError(
        "Refusing to truncate selection tables on "
        f"'{target.database_name}'@'{target.host}': {'; '.join(target.problems)}. "
        "Point DATABASE_URL at a local database such as 'skill_evaluate_test'."
    )
