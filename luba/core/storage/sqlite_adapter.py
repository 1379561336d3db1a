import sqlite3
import threading
from pathlib import Path
from typing import Optional, List, Tuple, Iterable

from luba.utils.logger import get_logger

logger = get_logger("storage.sqlite")

# (collection, token_id, index, value, count, escrow, bidder)
TallyRow = Tuple[bytes, bytes, int, int, int, bytes, bytes]

# (escrow, bidder, collection, token_id, index, seller, seller_payment, refund, settled_at)
SettlementRow = Tuple[bytes, bytes, bytes, bytes, int, Optional[bytes], str, str, int]


class SQLiteAdapter:
    """
    SQLite backend for auction engine state.

    Provides:
    1. Packed auction records keyed by (collection, token_id)
    2. The global revealed-escrow set
    3. Per-generation bid tallies
    4. One-shot settlement records
    5. Engine metadata
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn_local = threading.local()

        # Ensure directory exists
        if not db_path.parent.exists():
            db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create connection for current thread."""
        if not hasattr(self._conn_local, "conn"):
            self._conn_local.conn = sqlite3.connect(
                self.db_path,
                timeout=30.0,
                check_same_thread=False
            )
            self._conn_local.conn.row_factory = sqlite3.Row
            # Enable WAL mode for better concurrency
            self._conn_local.conn.execute("PRAGMA journal_mode=WAL;")
            self._conn_local.conn.execute("PRAGMA synchronous=NORMAL;")
        return self._conn_local.conn

    def close(self):
        """Close the connection of the current thread."""
        conn = getattr(self._conn_local, "conn", None)
        if conn is not None:
            conn.close()
            del self._conn_local.conn

    def _init_schema(self):
        """Initialize database schema."""
        conn = self._get_conn()
        with conn:
            # 1. Auction records (packed layout)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS auctions (
                    collection BLOB NOT NULL,
                    token_id BLOB NOT NULL,
                    data BLOB NOT NULL,
                    PRIMARY KEY (collection, token_id)
                )
            """)

            # 2. Revealed escrows (never pruned)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS revealed_escrows (
                    escrow BLOB PRIMARY KEY
                )
            """)

            # 3. Bid tallies, one row per (key, generation, value)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS bid_tallies (
                    collection BLOB NOT NULL,
                    token_id BLOB NOT NULL,
                    generation INTEGER NOT NULL,
                    bid_value INTEGER NOT NULL,
                    count INTEGER NOT NULL,
                    escrow BLOB NOT NULL,
                    bidder BLOB NOT NULL,
                    PRIMARY KEY (collection, token_id, generation, bid_value)
                )
            """)

            # 4. Settlements; amounts are TEXT because they exceed int64
            conn.execute("""
                CREATE TABLE IF NOT EXISTS settlements (
                    escrow BLOB PRIMARY KEY,
                    bidder BLOB NOT NULL,
                    collection BLOB NOT NULL,
                    token_id BLOB NOT NULL,
                    generation INTEGER NOT NULL,
                    seller BLOB,
                    seller_payment TEXT NOT NULL,
                    refund TEXT NOT NULL,
                    settled_at INTEGER NOT NULL
                )
            """)

            # 5. Metadata
            conn.execute("""
                CREATE TABLE IF NOT EXISTS engine_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)

    # =========================================================================
    # Metadata
    # =========================================================================

    def set_meta(self, key: str, value: str):
        conn = self._get_conn()
        with conn:
            conn.execute("INSERT OR REPLACE INTO engine_meta (key, value) VALUES (?, ?)", (key, value))

    def get_meta(self, key: str) -> Optional[str]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT value FROM engine_meta WHERE key = ?", (key,))
        row = cursor.fetchone()
        return row['value'] if row else None

    # =========================================================================
    # Reads
    # =========================================================================

    def get_auction(self, collection: bytes, token_id: bytes) -> Optional[bytes]:
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT data FROM auctions WHERE collection = ? AND token_id = ?",
            (collection, token_id)
        )
        row = cursor.fetchone()
        return row['data'] if row else None

    def get_all_auctions(self) -> List[Tuple[bytes, bytes, bytes]]:
        """Get all (collection, token_id, data)."""
        conn = self._get_conn()
        cursor = conn.execute("SELECT collection, token_id, data FROM auctions")
        return [(row['collection'], row['token_id'], row['data']) for row in cursor]

    def is_revealed(self, escrow: bytes) -> bool:
        conn = self._get_conn()
        cursor = conn.execute("SELECT 1 FROM revealed_escrows WHERE escrow = ?", (escrow,))
        return cursor.fetchone() is not None

    def get_all_revealed(self) -> List[bytes]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT escrow FROM revealed_escrows")
        return [row['escrow'] for row in cursor]

    def get_all_tallies(self) -> List[TallyRow]:
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT collection, token_id, generation, bid_value, count, escrow, bidder FROM bid_tallies"
        )
        return [tuple(row) for row in cursor]

    def get_all_settlements(self) -> List[SettlementRow]:
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT escrow, bidder, collection, token_id, generation, seller, "
            "seller_payment, refund, settled_at FROM settlements ORDER BY settled_at ASC"
        )
        return [tuple(row) for row in cursor]

    def count(self, table: str) -> int:
        if table not in ("auctions", "revealed_escrows", "bid_tallies", "settlements"):
            raise ValueError(f"Unknown table {table}")
        conn = self._get_conn()
        cursor = conn.execute(f"SELECT COUNT(*) as cnt FROM {table}")
        return cursor.fetchone()['cnt']

    # =========================================================================
    # Writes
    # =========================================================================

    def persist_engine_update(
        self,
        auctions: Iterable[Tuple[bytes, bytes, bytes]],
        revealed: Iterable[bytes],
        tallies: Iterable[TallyRow],
        settlements: Iterable[SettlementRow],
    ):
        """
        Atomically apply the effects of one engine operation.

        Args:
            auctions: (collection, token_id, packed record) to upsert
            revealed: Newly revealed escrows
            tallies: Tally rows to upsert
            settlements: New settlement rows
        """
        conn = self._get_conn()
        with conn:
            conn.executemany(
                "INSERT OR REPLACE INTO auctions (collection, token_id, data) VALUES (?, ?, ?)",
                list(auctions)
            )
            conn.executemany(
                "INSERT OR IGNORE INTO revealed_escrows (escrow) VALUES (?)",
                [(escrow,) for escrow in revealed]
            )
            conn.executemany(
                "INSERT OR REPLACE INTO bid_tallies "
                "(collection, token_id, generation, bid_value, count, escrow, bidder) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                list(tallies)
            )
            # A settlement is written once; a second insert is a bug, let it fail
            conn.executemany(
                "INSERT INTO settlements "
                "(escrow, bidder, collection, token_id, generation, seller, seller_payment, refund, settled_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                list(settlements)
            )
