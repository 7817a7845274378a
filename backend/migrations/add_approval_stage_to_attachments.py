"""
Migration: Add approval stage and uploader snapshot to report_attachments.

Databases created before staged approval documents only held Initial
attachments, so existing rows are backfilled with that stage.
"""
from sqlalchemy import create_engine, inspect, text
import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./report_workflow.db")

NEW_COLUMNS = {
    "approval_stage": "VARCHAR(14) NOT NULL DEFAULT 'INITIAL'",
    "uploaded_by_name": "VARCHAR(200)",
    "uploaded_by_role": "VARCHAR(15) NOT NULL DEFAULT 'GENERAL_STAFF'",
}


def run_migration():
    """Add missing staging columns to report_attachments."""
    engine = create_engine(DATABASE_URL)

    with engine.connect() as conn:
        if "report_attachments" not in inspect(conn).get_table_names():
            print("report_attachments table does not exist yet, nothing to migrate")
            return

        existing = {c["name"] for c in inspect(conn).get_columns("report_attachments")}
        for column, ddl in NEW_COLUMNS.items():
            if column in existing:
                print(f"{column} column already exists")
                continue
            conn.execute(text(f"ALTER TABLE report_attachments ADD COLUMN {column} {ddl}"))
            print(f"Added {column} column to report_attachments table")

        conn.commit()


if __name__ == "__main__":
    run_migration()
