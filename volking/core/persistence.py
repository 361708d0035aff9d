"""
Durable storage for winners, burns, reward transfers and lifetime totals
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite

from volking.core.logger import get_logger
from volking.core.round_state import GlobalStats


logger = get_logger(__name__)

# Reward transfers kept for display
REWARD_TRANSFER_RETENTION = 100


@dataclass
class WinnerRecord:
    """A paid round winner; signature is always a confirmed reward transfer"""
    wallet: str
    volume: float
    reward: float
    signature: str
    round_number: int
    round_start: float
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BurnRecord:
    amount_sol: float
    tokens_burned: float
    signature: str
    round_number: int
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RewardTransferRecord:
    wallet: str
    amount: float
    signature: str
    round_number: int
    round_start: float
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PersistenceGateway(ABC):
    """Operations the round engine needs from durable storage"""

    async def connect(self) -> None:
        """Open resources; no-op by default"""

    async def close(self) -> None:
        """Release resources; no-op by default"""

    async def check_health(self) -> Dict[str, Any]:
        return {"healthy": True}

    @abstractmethod
    async def save_winner(self, record: WinnerRecord) -> None: ...

    @abstractmethod
    async def save_burn(self, record: BurnRecord) -> None: ...

    @abstractmethod
    async def save_reward_transfer(self, record: RewardTransferRecord) -> None: ...

    @abstractmethod
    async def get_global_stats(self) -> Optional[GlobalStats]: ...

    @abstractmethod
    async def update_global_stats(self, stats: GlobalStats) -> None: ...

    @abstractmethod
    async def get_winners(self, limit: int = 50) -> List[WinnerRecord]: ...

    @abstractmethod
    async def get_burns(self, limit: int = 50) -> List[BurnRecord]: ...

    @abstractmethod
    async def get_reward_transfers(self, limit: int = 50) -> List[RewardTransferRecord]: ...

    @abstractmethod
    async def get_hall_of_degens(self, limit: int = 1000) -> List[Dict[str, Any]]: ...

    @abstractmethod
    async def update_winner_signature(self, wallet: str, round_start: float, signature: str) -> int: ...

    @abstractmethod
    async def update_burn_signature(
        self, round_number: int, tokens_burned: float, signature: str
    ) -> float: ...


class SQLitePersistence(PersistenceGateway):
    """
    SQLite implementation (aiosqlite, WAL)

    Schema:
    - winners: one row per paid winner
    - burns: one row per completed buyback & burn
    - reward_transfers: most recent reward payments
    - global_stats: singleton row (id = 1)
    """

    def __init__(self, db_path: str = "data/volking.db"):
        self.db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError("Persistence not connected. Call connect() first.")
        return self._connection

    async def connect(self) -> None:
        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row
        await self._create_tables()
        logger.info("persistence_connected", db_path=self.db_path)

    async def _create_tables(self) -> None:
        db = self.connection
        await db.execute("PRAGMA journal_mode=WAL")
        await db.execute("PRAGMA synchronous=NORMAL")
        await db.execute("PRAGMA busy_timeout=5000")

        await db.execute("""
            CREATE TABLE IF NOT EXISTS winners (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                wallet TEXT NOT NULL,
                volume REAL NOT NULL,
                reward REAL NOT NULL,
                signature TEXT NOT NULL,
                round_number INTEGER NOT NULL,
                round_start REAL NOT NULL,
                timestamp REAL NOT NULL,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
        """)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS burns (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                amount_sol REAL NOT NULL,
                tokens_burned REAL NOT NULL DEFAULT 0,
                signature TEXT,
                round_number INTEGER NOT NULL,
                timestamp REAL NOT NULL,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
        """)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS reward_transfers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                wallet TEXT NOT NULL,
                amount REAL NOT NULL,
                signature TEXT NOT NULL,
                round_number INTEGER NOT NULL,
                round_start REAL NOT NULL,
                timestamp REAL NOT NULL,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
        """)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS global_stats (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                total_rounds_completed INTEGER NOT NULL DEFAULT 0,
                total_rewards_paid REAL NOT NULL DEFAULT 0,
                total_supply_burned REAL NOT NULL DEFAULT 0,
                current_round_number INTEGER NOT NULL DEFAULT 1,
                reward_wallet_balance REAL NOT NULL DEFAULT 0,
                start_reward REAL NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
        """)

        await db.execute("CREATE INDEX IF NOT EXISTS idx_winners_wallet ON winners(wallet)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_winners_timestamp ON winners(timestamp)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_burns_round ON burns(round_number)")
        await db.commit()

    async def close(self) -> None:
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("persistence_closed")

    # ============================================================================
    # WRITES
    # ============================================================================

    async def save_winner(self, record: WinnerRecord) -> None:
        if not record.signature:
            raise ValueError("Winner record requires a reward signature")

        await self.connection.execute("""
            INSERT INTO winners (wallet, volume, reward, signature, round_number, round_start, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            record.wallet, record.volume, record.reward, record.signature,
            record.round_number, record.round_start, record.timestamp
        ))
        await self.connection.commit()
        logger.info("winner_saved", wallet=record.wallet, round_number=record.round_number)

    async def save_burn(self, record: BurnRecord) -> None:
        await self.connection.execute("""
            INSERT INTO burns (amount_sol, tokens_burned, signature, round_number, timestamp)
            VALUES (?, ?, ?, ?, ?)
        """, (record.amount_sol, record.tokens_burned, record.signature, record.round_number, record.timestamp))
        await self.connection.commit()
        logger.info("burn_saved", tokens_burned=record.tokens_burned, round_number=record.round_number)

    async def save_reward_transfer(self, record: RewardTransferRecord) -> None:
        db = self.connection
        await db.execute("""
            INSERT INTO reward_transfers (wallet, amount, signature, round_number, round_start, timestamp)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            record.wallet, record.amount, record.signature,
            record.round_number, record.round_start, record.timestamp
        ))
        await db.execute("""
            DELETE FROM reward_transfers WHERE id NOT IN (
                SELECT id FROM reward_transfers ORDER BY timestamp DESC, id DESC LIMIT ?
            )
        """, (REWARD_TRANSFER_RETENTION,))
        await db.commit()

    async def update_global_stats(self, stats: GlobalStats) -> None:
        await self.connection.execute("""
            INSERT INTO global_stats (
                id, total_rounds_completed, total_rewards_paid, total_supply_burned,
                current_round_number, reward_wallet_balance, start_reward, updated_at
            ) VALUES (1, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(id) DO UPDATE SET
                total_rounds_completed = excluded.total_rounds_completed,
                total_rewards_paid = excluded.total_rewards_paid,
                total_supply_burned = excluded.total_supply_burned,
                current_round_number = excluded.current_round_number,
                reward_wallet_balance = excluded.reward_wallet_balance,
                start_reward = excluded.start_reward,
                updated_at = CURRENT_TIMESTAMP
        """, (
            stats.total_rounds_completed, stats.total_rewards_paid, stats.total_supply_burned,
            stats.current_round_number, stats.reward_wallet_balance, stats.start_reward
        ))
        await self.connection.commit()

    async def update_winner_signature(self, wallet: str, round_start: float, signature: str) -> int:
        """
        Attach a manually-sent reward signature to a winner and its transfer

        Returns:
            Number of winner rows updated
        """
        db = self.connection
        cursor = await db.execute(
            "UPDATE winners SET signature = ? WHERE wallet = ? AND round_start = ?",
            (signature, wallet, round_start)
        )
        await db.execute(
            "UPDATE reward_transfers SET signature = ? WHERE wallet = ? AND round_start = ?",
            (signature, wallet, round_start)
        )
        await db.commit()
        logger.info("winner_signature_updated", wallet=wallet, rows=cursor.rowcount)
        return cursor.rowcount

    async def update_burn_signature(self, round_number: int, tokens_burned: float, signature: str) -> float:
        """
        Record a manually completed burn for a round and recompute the total

        Returns:
            New lifetime tokens burned
        """
        db = self.connection
        cursor = await db.execute(
            "UPDATE burns SET tokens_burned = ?, signature = ? WHERE round_number = ?",
            (tokens_burned, signature, round_number)
        )
        if cursor.rowcount == 0:
            await db.execute("""
                INSERT INTO burns (amount_sol, tokens_burned, signature, round_number, timestamp)
                VALUES (0, ?, ?, ?, strftime('%s', 'now'))
            """, (tokens_burned, signature, round_number))

        cursor = await db.execute("SELECT COALESCE(SUM(tokens_burned), 0) AS total FROM burns")
        row = await cursor.fetchone()
        total = float(row["total"])

        await db.execute("""
            INSERT INTO global_stats (id, total_supply_burned) VALUES (1, ?)
            ON CONFLICT(id) DO UPDATE SET total_supply_burned = excluded.total_supply_burned,
                updated_at = CURRENT_TIMESTAMP
        """, (total,))
        await db.commit()
        logger.info("burn_signature_updated", round_number=round_number, total_supply_burned=total)
        return total

    # ============================================================================
    # READS
    # ============================================================================

    async def get_global_stats(self) -> Optional[GlobalStats]:
        cursor = await self.connection.execute("SELECT * FROM global_stats WHERE id = 1")
        row = await cursor.fetchone()
        if row is None:
            return None

        return GlobalStats(
            total_rounds_completed=int(row["total_rounds_completed"]),
            total_rewards_paid=float(row["total_rewards_paid"]),
            total_supply_burned=float(row["total_supply_burned"]),
            current_round_number=int(row["current_round_number"]),
            reward_wallet_balance=float(row["reward_wallet_balance"]),
            start_reward=float(row["start_reward"]),
        )

    async def get_winners(self, limit: int = 50) -> List[WinnerRecord]:
        cursor = await self.connection.execute("""
            SELECT wallet, volume, reward, signature, round_number, round_start, timestamp
            FROM winners ORDER BY timestamp DESC, id DESC LIMIT ?
        """, (limit,))
        rows = await cursor.fetchall()
        return [WinnerRecord(**dict(row)) for row in rows]

    async def get_burns(self, limit: int = 50) -> List[BurnRecord]:
        cursor = await self.connection.execute("""
            SELECT amount_sol, tokens_burned, signature, round_number, timestamp
            FROM burns ORDER BY timestamp DESC, id DESC LIMIT ?
        """, (limit,))
        rows = await cursor.fetchall()
        return [BurnRecord(**dict(row)) for row in rows]

    async def get_reward_transfers(self, limit: int = 50) -> List[RewardTransferRecord]:
        cursor = await self.connection.execute("""
            SELECT wallet, amount, signature, round_number, round_start, timestamp
            FROM reward_transfers ORDER BY timestamp DESC, id DESC LIMIT ?
        """, (limit,))
        rows = await cursor.fetchall()
        return [RewardTransferRecord(**dict(row)) for row in rows]

    async def get_hall_of_degens(self, limit: int = 1000) -> List[Dict[str, Any]]:
        """Per-wallet win count, rewards and volume, most wins first"""
        cursor = await self.connection.execute("""
            SELECT wallet,
                   COUNT(*) AS total_wins,
                   SUM(reward) AS total_rewards,
                   SUM(volume) AS total_volume,
                   MAX(timestamp) AS last_win
            FROM winners
            GROUP BY wallet
            ORDER BY total_wins DESC, total_rewards DESC
            LIMIT ?
        """, (limit,))
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def check_health(self) -> Dict[str, Any]:
        try:
            cursor = await self.connection.execute("SELECT sqlite_version() AS version")
            row = await cursor.fetchone()
            return {"healthy": True, "version": row["version"]}
        except (aiosqlite.Error, RuntimeError) as e:
            return {"healthy": False, "error": str(e)}
