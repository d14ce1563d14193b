"""
SQLite Ledger Storage

DESIGN DECISION: SQLite gives us real transactions with no server to run,
which is exactly what the recurring firing needs: three writes that
commit together or not at all.

- Writes run inside BEGIN IMMEDIATE, so the balance read-modify-write
  holds the database write lock for its whole duration.
- Money is stored as TEXT and summed as Decimal in Python, never with
  SQL SUM over REAL columns.
- Datetimes are stored as ISO 8601 text, which sorts chronologically.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterator, Optional
from uuid import UUID

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from cashvault.models.ledger import (
    Account,
    AccountType,
    Budget,
    BudgetCheckTarget,
    RecurringFiring,
    RecurringInterval,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)
from cashvault.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    PersistenceError,
    StorageError,
)


logger = structlog.get_logger(__name__)


SCHEMA = """
    CREATE TABLE IF NOT EXISTS users (
        id     TEXT PRIMARY KEY,
        email  TEXT,
        name   TEXT
    );

    CREATE TABLE IF NOT EXISTS accounts (
        id          TEXT PRIMARY KEY,
        user_id     TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        name        TEXT NOT NULL,
        type        TEXT NOT NULL CHECK(type IN ('CURRENT','SAVINGS')),
        balance     TEXT NOT NULL DEFAULT '0',
        is_default  INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS transactions (
        id                   TEXT PRIMARY KEY,
        user_id              TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        account_id           TEXT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
        type                 TEXT NOT NULL CHECK(type IN ('EXPENSE','INCOME')),
        amount               TEXT NOT NULL,
        description          TEXT,
        date                 TEXT NOT NULL,
        category             TEXT NOT NULL,
        status               TEXT NOT NULL CHECK(status IN ('PENDING','COMPLETED','FAILED')),
        is_recurring         INTEGER NOT NULL DEFAULT 0,
        recurring_interval   TEXT,
        next_recurring_date  TEXT,
        last_processed       TEXT,
        recurring_source_id  TEXT,
        idempotency_key      TEXT UNIQUE
    );

    CREATE TABLE IF NOT EXISTS budgets (
        id               TEXT PRIMARY KEY,
        user_id          TEXT NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
        amount           TEXT NOT NULL,
        last_alert_sent  TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_transactions_user_date    ON transactions(user_id, date);
    CREATE INDEX IF NOT EXISTS idx_transactions_account_date ON transactions(account_id, date);
    CREATE INDEX IF NOT EXISTS idx_transactions_recurring    ON transactions(is_recurring);
    CREATE INDEX IF NOT EXISTS idx_accounts_user             ON accounts(user_id);
"""

TRANSACTION_COLUMNS = (
    "id", "user_id", "account_id", "type", "amount", "description", "date",
    "category", "status", "is_recurring", "recurring_interval",
    "next_recurring_date", "last_processed", "recurring_source_id",
    "idempotency_key",
)


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteLedgerStorage(LedgerStorageInterface):
    """
    SQLite implementation of ledger storage.

    One connection is shared by the instance. The async methods run
    synchronously, so two coroutines can never interleave inside one
    storage transaction.
    """

    def __init__(self, db_path: str = ":memory:", busy_timeout_ms: int = 5000):
        self.db_path = db_path
        self._busy_timeout_ms = busy_timeout_ms
        self._conn: Optional[sqlite3.Connection] = None

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    @retry(
        retry=retry_if_exception_type(ConnectionError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                if self.db_path != ":memory:":
                    Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                # Autocommit mode; transactions are opened explicitly
                conn = sqlite3.connect(
                    self.db_path,
                    check_same_thread=False,
                    isolation_level=None,
                )
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
                conn.execute(f"PRAGMA busy_timeout = {int(self._busy_timeout_ms)}")
                if self.db_path != ":memory:":
                    conn.execute("PRAGMA journal_mode = WAL")
            except sqlite3.Error as e:
                raise ConnectionError(f"Failed to open ledger database {self.db_path}: {e}")
            self._conn = conn
        return self._conn

    def initialize(self) -> "SQLiteLedgerStorage":
        """Create the schema. Safe to call repeatedly."""
        self.get_connection().executescript(SCHEMA)
        return self

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self.get_connection()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        try:
            conn.execute("COMMIT")
        except sqlite3.Error:
            conn.execute("ROLLBACK")
            raise

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _row_to_user(self, row) -> User:
        return User(id=UUID(row["id"]), email=row["email"], name=row["name"])

    def _row_to_account(self, row) -> Account:
        return Account(
            id=UUID(row["id"]),
            user_id=UUID(row["user_id"]),
            name=row["name"],
            type=AccountType(row["type"]),
            balance=Decimal(row["balance"]),
            is_default=bool(row["is_default"]),
        )

    def _row_to_transaction(self, row) -> Transaction:
        return Transaction(
            id=UUID(row["id"]),
            user_id=UUID(row["user_id"]),
            account_id=UUID(row["account_id"]),
            type=TransactionType(row["type"]),
            amount=Decimal(row["amount"]),
            description=row["description"],
            date=datetime.fromisoformat(row["date"]),
            category=row["category"],
            status=TransactionStatus(row["status"]),
            is_recurring=bool(row["is_recurring"]),
            recurring_interval=self._parse_interval(row),
            next_recurring_date=_parse_dt(row["next_recurring_date"]),
            last_processed=_parse_dt(row["last_processed"]),
            recurring_source_id=(
                UUID(row["recurring_source_id"]) if row["recurring_source_id"] else None
            ),
            idempotency_key=row["idempotency_key"],
        )

    def _parse_interval(self, row) -> Optional[RecurringInterval]:
        value = row["recurring_interval"]
        if not value:
            return None
        try:
            return RecurringInterval(value)
        except ValueError:
            # Surfaces as "interval missing" so the template is skipped, not the batch
            logger.warning("unknown_recurring_interval", transaction_id=row["id"], value=value)
            return None

    def _row_to_budget(self, row) -> Budget:
        return Budget(
            id=UUID(row["id"]),
            user_id=UUID(row["user_id"]),
            amount=Decimal(row["amount"]),
            last_alert_sent=_parse_dt(row["last_alert_sent"]),
        )

    def _transaction_values(self, t: Transaction) -> tuple:
        return (
            str(t.id),
            str(t.user_id),
            str(t.account_id),
            t.type.value,
            str(t.amount),
            t.description,
            t.date.isoformat(),
            t.category,
            t.status.value,
            int(t.is_recurring),
            t.recurring_interval.value if t.recurring_interval else None,
            _dt(t.next_recurring_date),
            _dt(t.last_processed),
            str(t.recurring_source_id) if t.recurring_source_id else None,
            t.idempotency_key,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_recurring_transactions(self) -> list[Transaction]:
        rows = self.get_connection().execute(
            "SELECT * FROM transactions WHERE is_recurring = 1 ORDER BY date, id"
        ).fetchall()
        return [self._row_to_transaction(r) for r in rows]

    async def get_transaction(
        self,
        transaction_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        sql = "SELECT * FROM transactions WHERE id = ?"
        params: list = [str(transaction_id)]
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(str(user_id))
        row = self.get_connection().execute(sql, params).fetchone()
        return self._row_to_transaction(row) if row else None

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        row = self.get_connection().execute(
            "SELECT * FROM accounts WHERE id = ?", (str(account_id),)
        ).fetchone()
        return self._row_to_account(row) if row else None

    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        row = self.get_connection().execute(
            "SELECT * FROM budgets WHERE id = ?", (str(budget_id),)
        ).fetchone()
        return self._row_to_budget(row) if row else None

    def _default_account(self, user_id: str) -> Optional[Account]:
        row = self.get_connection().execute(
            "SELECT * FROM accounts WHERE user_id = ? AND is_default = 1 "
            "ORDER BY rowid LIMIT 1",
            (user_id,),
        ).fetchone()
        return self._row_to_account(row) if row else None

    async def list_budget_targets(self) -> list[BudgetCheckTarget]:
        rows = self.get_connection().execute(
            """
            SELECT b.*, u.email AS user_email, u.name AS user_name
            FROM budgets b
            JOIN users u ON b.user_id = u.id
            ORDER BY b.rowid
            """
        ).fetchall()
        targets = []
        for row in rows:
            user = User(id=UUID(row["user_id"]), email=row["user_email"], name=row["user_name"])
            targets.append(BudgetCheckTarget(
                budget=self._row_to_budget(row),
                user=user,
                default_account=self._default_account(row["user_id"]),
            ))
        return targets

    async def get_expense_total(
        self,
        user_id: UUID,
        account_id: UUID,
        date_from: datetime,
        date_to: datetime,
    ) -> Decimal:
        rows = self.get_connection().execute(
            """
            SELECT amount FROM transactions
            WHERE user_id = ? AND account_id = ? AND type = 'EXPENSE'
              AND date >= ? AND date < ?
            """,
            (str(user_id), str(account_id), date_from.isoformat(), date_to.isoformat()),
        ).fetchall()
        return sum((Decimal(r["amount"]) for r in rows), Decimal("0"))

    async def list_users(self) -> list[User]:
        rows = self.get_connection().execute(
            "SELECT * FROM users ORDER BY rowid"
        ).fetchall()
        return [self._row_to_user(r) for r in rows]

    async def list_accounts(self, user_id: UUID) -> list[Account]:
        rows = self.get_connection().execute(
            "SELECT * FROM accounts WHERE user_id = ? ORDER BY rowid", (str(user_id),)
        ).fetchall()
        return [self._row_to_account(r) for r in rows]

    async def list_transactions(
        self,
        user_id: UUID,
        date_from: datetime,
        date_to: datetime,
    ) -> list[Transaction]:
        rows = self.get_connection().execute(
            "SELECT * FROM transactions WHERE user_id = ? AND date >= ? AND date < ? "
            "ORDER BY date, rowid",
            (str(user_id), date_from.isoformat(), date_to.isoformat()),
        ).fetchall()
        return [self._row_to_transaction(r) for r in rows]

    # ------------------------------------------------------------------
    # Job writes
    # ------------------------------------------------------------------

    def _insert_transaction(self, conn: sqlite3.Connection, t: Transaction):
        placeholders = ", ".join("?" for _ in TRANSACTION_COLUMNS)
        conn.execute(
            f"INSERT INTO transactions ({', '.join(TRANSACTION_COLUMNS)}) "
            f"VALUES ({placeholders})",
            self._transaction_values(t),
        )

    def _increment_balance(self, conn: sqlite3.Connection, account_id: UUID, delta: Decimal):
        row = conn.execute(
            "SELECT balance FROM accounts WHERE id = ?", (str(account_id),)
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Account not found: {account_id}")
        new_balance = Decimal(row["balance"]) + delta
        conn.execute(
            "UPDATE accounts SET balance = ? WHERE id = ?",
            (str(new_balance), str(account_id)),
        )

    def _advance_schedule(self, conn: sqlite3.Connection, firing: RecurringFiring):
        cursor = conn.execute(
            "UPDATE transactions SET last_processed = ?, next_recurring_date = ? WHERE id = ?",
            (
                firing.processed_at.isoformat(),
                firing.next_recurring_date.isoformat(),
                str(firing.transaction_id),
            ),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Recurring transaction not found: {firing.transaction_id}")

    async def apply_recurring_firing(self, firing: RecurringFiring) -> None:
        try:
            with self._transaction() as conn:
                self._increment_balance(conn, firing.account_id, firing.balance_delta)
                self._insert_transaction(conn, firing.new_entry)
                self._advance_schedule(conn, firing)
        except StorageError:
            raise
        except sqlite3.IntegrityError as e:
            if "idempotency_key" in str(e):
                raise DuplicateError(
                    f"Firing already applied: {firing.new_entry.idempotency_key}"
                )
            raise PersistenceError(f"Failed to apply recurring firing: {e}")
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to apply recurring firing: {e}")

        logger.debug(
            "recurring_firing_applied",
            transaction_id=str(firing.transaction_id),
            new_entry_id=str(firing.new_entry.id),
            balance_delta=str(firing.balance_delta),
        )

    async def mark_budget_alert_sent(
        self,
        budget_id: UUID,
        sent_at: datetime,
    ) -> None:
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    "UPDATE budgets SET last_alert_sent = ? WHERE id = ?",
                    (sent_at.isoformat(), str(budget_id)),
                )
                if cursor.rowcount == 0:
                    raise NotFoundError(f"Budget not found: {budget_id}")
        except StorageError:
            raise
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to mark budget alert: {e}")

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def _insert(self, sql: str, params: tuple, what: str):
        try:
            with self._transaction() as conn:
                conn.execute(sql, params)
        except sqlite3.IntegrityError as e:
            raise DuplicateError(f"Failed to save {what}: {e}")
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to save {what}: {e}")

    async def save_user(self, user: User) -> User:
        self._insert(
            "INSERT INTO users (id, email, name) VALUES (?, ?, ?)",
            (str(user.id), user.email, user.name),
            "user",
        )
        return user

    async def save_account(self, account: Account) -> Account:
        self._insert(
            "INSERT INTO accounts (id, user_id, name, type, balance, is_default) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                str(account.id),
                str(account.user_id),
                account.name,
                account.type.value,
                str(account.balance),
                int(account.is_default),
            ),
            "account",
        )
        return account

    async def save_transaction(self, transaction: Transaction) -> Transaction:
        placeholders = ", ".join("?" for _ in TRANSACTION_COLUMNS)
        self._insert(
            f"INSERT INTO transactions ({', '.join(TRANSACTION_COLUMNS)}) "
            f"VALUES ({placeholders})",
            self._transaction_values(transaction),
            "transaction",
        )
        return transaction

    async def save_budget(self, budget: Budget) -> Budget:
        self._insert(
            "INSERT INTO budgets (id, user_id, amount, last_alert_sent) VALUES (?, ?, ?, ?)",
            (
                str(budget.id),
                str(budget.user_id),
                str(budget.amount),
                _dt(budget.last_alert_sent),
            ),
            "budget",
        )
        return budget
