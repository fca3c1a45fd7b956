"""
Migration: Enforce settlement idempotency at the database level.

For databases created before the ledger carried its unique keys:
1. uq_settlement_report_type_completed - one COMPLETED settlement per
   (related_report_id, type)
2. uq_debt_accrual_period - one accrual tick per (debt_id, period_key)
3. WITHDRAWAL transaction type, backfilled for completed withdrawals

Existing duplicates abort the migration; resolve them before re-running.

Usage: python -m migrations.add_settlement_idempotency
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.database import engine
from sqlalchemy import text


def index_exists(conn, index_name: str) -> bool:
    """Check if an index exists in the database."""
    result = conn.execute(text("""
        SELECT EXISTS (
            SELECT FROM pg_indexes
            WHERE indexname = :index_name
        )
    """), {"index_name": index_name})
    return result.fetchone()[0]


def run_migration():
    """Create the idempotency indexes if missing."""
    with engine.connect() as conn:
        # =================================================================
        # INDEX 1: settlement_transactions
        # =================================================================
        if index_exists(conn, "uq_settlement_report_type_completed"):
            print("uq_settlement_report_type_completed already exists")
        else:
            duplicates = conn.execute(text("""
                SELECT related_report_id, type, COUNT(*)
                FROM settlement_transactions
                WHERE status = 'COMPLETED' AND related_report_id IS NOT NULL
                GROUP BY related_report_id, type
                HAVING COUNT(*) > 1
            """)).fetchall()
            if duplicates:
                print(f"ERROR: {len(duplicates)} report(s) settled more than once:")
                for report_id, tx_type, count in duplicates:
                    print(f"  {report_id} {tx_type} x{count}")
                return

            conn.execute(text("""
                CREATE UNIQUE INDEX uq_settlement_report_type_completed
                ON settlement_transactions(related_report_id, type)
                WHERE status = 'COMPLETED' AND related_report_id IS NOT NULL
            """))
            print("Created uq_settlement_report_type_completed")

        # =================================================================
        # INDEX 2: debt_accrual_ticks
        # =================================================================
        if index_exists(conn, "uq_debt_accrual_period"):
            print("uq_debt_accrual_period already exists")
        else:
            conn.execute(text("""
                ALTER TABLE debt_accrual_ticks
                ADD CONSTRAINT uq_debt_accrual_period UNIQUE (debt_id, period_key)
            """))
            print("Created uq_debt_accrual_period")

        # =================================================================
        # ENUM: withdrawals get their own transaction type
        # =================================================================
        conn.execute(text("ALTER TYPE transactiontype ADD VALUE IF NOT EXISTS 'WITHDRAWAL'"))
        # A new enum value is usable only after the transaction that added it commits
        conn.commit()
        conn.execute(text("""
            UPDATE settlement_transactions
            SET type = 'WITHDRAWAL'
            WHERE id IN (SELECT transaction_id FROM withdrawal_requests WHERE transaction_id IS NOT NULL)
        """))
        print("Withdrawal debits moved to the WITHDRAWAL transaction type")

        conn.commit()
        print("\nSettlement idempotency migration completed successfully!")


if __name__ == "__main__":
    run_migration()
