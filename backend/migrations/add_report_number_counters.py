"""
Migration: Add report_number_counters and make report numbers unique.

Counters are seeded from the highest number already issued per department
and year, so allocation continues where the old max-plus-one scheme stopped.
"""
from sqlalchemy import create_engine, inspect, text
import os
import re

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./report_workflow.db")

NUMBER_PATTERN = re.compile(r"^([A-Z]+-\d{4})-(\d+)$")


def run_migration():
    """Create the counter table, seed it, and add the unique index."""
    engine = create_engine(DATABASE_URL)

    with engine.connect() as conn:
        tables = inspect(conn).get_table_names()
        if "reports" not in tables:
            print("reports table does not exist yet, nothing to migrate")
            return

        if "report_number_counters" in tables:
            print("report_number_counters table already exists")
        else:
            conn.execute(text(
                "CREATE TABLE report_number_counters ("
                "name VARCHAR(20) PRIMARY KEY, "
                "current_value INTEGER NOT NULL DEFAULT 0, "
                "updated_at DATETIME)"
            ))
            print("Created report_number_counters table")

            highest = {}
            for (number,) in conn.execute(text("SELECT report_number FROM reports WHERE report_number IS NOT NULL")):
                match = NUMBER_PATTERN.match(number)
                if match:
                    name, suffix = match.group(1), int(match.group(2))
                    highest[name] = max(highest.get(name, 0), suffix)
            for name, value in highest.items():
                conn.execute(
                    text("INSERT INTO report_number_counters (name, current_value) VALUES (:name, :value)"),
                    {"name": name, "value": value},
                )
            print(f"Seeded {len(highest)} counter(s)")

        indexes = {i["name"] for i in inspect(conn).get_indexes("reports")}
        if "uq_reports_report_number" in indexes:
            print("uq_reports_report_number index already exists")
        else:
            conn.execute(text("CREATE UNIQUE INDEX uq_reports_report_number ON reports (report_number)"))
            print("Added unique index on reports.report_number")

        conn.commit()


if __name__ == "__main__":
    run_migration()
