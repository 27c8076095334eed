"""
ストレージモジュール (Storage Module)

CSV通話明細の候補検索と、通話との関連付けの永続化を担当する
ストレージレイヤーを提供します。
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional

import structlog

from .models import (
    CallRecord,
    CandidateRecord,
    InvalidCandidateError,
    Link,
    to_utc,
)


class Storage(ABC):
    """
    ストレージの抽象基底クラス

    突き合わせコアは直接ストレージを参照しません。
    候補検索 (find_candidates) と関連付け (link_call) はこのインターフェースを
    通じて呼び出し側から利用されます。
    """

    @abstractmethod
    def save_csv_call(self, user_id: str, record: CandidateRecord) -> None:
        """
        CSV通話明細を保存

        Args:
            user_id: 所有ユーザーID
            record: 保存する候補レコード

        Raises:
            StorageError: 保存に失敗した場合
        """
        pass

    @abstractmethod
    def get_csv_call(self, csv_call_id: str) -> Optional[CandidateRecord]:
        """
        IDでCSV通話明細を取得

        Returns:
            候補レコード、見つからない場合はNone
        """
        pass

    @abstractmethod
    def save_call(self, call: CallRecord) -> None:
        """
        録音由来の通話を保存

        Raises:
            StorageError: 保存に失敗した場合
        """
        pass

    @abstractmethod
    def get_call(self, call_id: str) -> Optional[CallRecord]:
        """
        IDで通話を取得

        Returns:
            通話データモデル、見つからない場合はNone
        """
        pass

    @abstractmethod
    def find_candidates(
        self,
        user_id: str,
        observed_time: datetime,
        tolerance_minutes: float,
        exclude_linked: bool = True
    ) -> List[CandidateRecord]:
        """
        指定時刻の前後 tolerance_minutes 分以内の候補を取得

        Args:
            user_id: 所有ユーザーID
            observed_time: 録音の通話時刻
            tolerance_minutes: 検索する時間幅（分）
            exclude_linked: 既に通話と関連付けられた行を除外するか

        Returns:
            時刻差の小さい順の候補レコードのリスト

        Raises:
            StorageError: 取得に失敗した場合
        """
        pass

    @abstractmethod
    def link_call(self, call_id: str, csv_call_id: str, user_id: str) -> Optional[Link]:
        """
        通話とCSV通話明細を関連付け

        通話ごとに関連付けは1件のみで、再関連付けは既存の関連付けを置き換えます。

        Returns:
            関連付け、通話またはCSV行がユーザーに属さない場合はNone

        Raises:
            StorageError: 更新に失敗した場合
        """
        pass


import sqlite3
from contextlib import contextmanager
from typing import Generator


class StorageError(Exception):
    """
    ストレージエラー

    データベース操作中に発生したエラーを表す例外クラスです。
    """
    pass


class SQLiteStorage(Storage):
    """
    SQLite実装

    SQLiteデータベースを使用したストレージ実装です。
    call_time は検索用に UTC のエポック秒も併せて保存します。
    """

    def __init__(self, db_path: str = "call_matcher.db"):
        """
        SQLiteStorageを初期化

        Args:
            db_path: SQLiteデータベースファイルのパス
        """
        self.db_path = db_path
        self.logger = structlog.get_logger(__name__)
        self._create_tables()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        データベース接続のコンテキストマネージャー

        Raises:
            StorageError: 接続に失敗した場合
        """
        conn = None
        try:
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row
            yield conn
        except sqlite3.Error as e:
            raise StorageError(f"Database connection error: {e}") from e
        finally:
            if conn:
                conn.close()

    def _create_tables(self) -> None:
        """
        データベーステーブルを作成

        Raises:
            StorageError: テーブル作成に失敗した場合
        """
        create_csv_call_table = """
        CREATE TABLE IF NOT EXISTS csv_call_data (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL,
            call_time TIMESTAMP NOT NULL,
            call_time_epoch REAL NOT NULL,
            call_direction VARCHAR(10) NOT NULL CHECK (call_direction IN ('Inbound', 'Outbound')),
            source_number VARCHAR(32),
            source_name TEXT,
            destination_number VARCHAR(32),
            call_duration_seconds INTEGER CHECK (call_duration_seconds >= 0),
            disposition VARCHAR(32),
            time_to_answer_seconds INTEGER,
            created_at TIMESTAMP NOT NULL
        )
        """

        create_call_table = """
        CREATE TABLE IF NOT EXISTS calls (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL,
            call_time TIMESTAMP NOT NULL,
            phone_number VARCHAR(32),
            duration_seconds INTEGER,
            csv_call_id VARCHAR(36) REFERENCES csv_call_data(id),
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP NOT NULL
        )
        """

        # Create indexes for common queries
        create_csv_call_user_time_index = """
        CREATE INDEX IF NOT EXISTS idx_csv_call_data_user_time
        ON csv_call_data(user_id, call_time_epoch)
        """

        create_call_csv_call_id_index = """
        CREATE INDEX IF NOT EXISTS idx_calls_csv_call_id ON calls(csv_call_id)
        """

        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(create_csv_call_table)
                cursor.execute(create_call_table)
                cursor.execute(create_csv_call_user_time_index)
                cursor.execute(create_call_csv_call_id_index)
                conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to create tables: {e}") from e

    def save_csv_call(self, user_id: str, record: CandidateRecord) -> None:
        """
        CSV通話明細を保存

        同じIDの行が存在する場合は更新します。

        Raises:
            StorageError: 保存に失敗した場合
        """
        sql = """
        INSERT OR REPLACE INTO csv_call_data (
            id, user_id, call_time, call_time_epoch, call_direction,
            source_number, source_name, destination_number,
            call_duration_seconds, disposition, time_to_answer_seconds, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """

        call_time = to_utc(record.call_time)
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(sql, (
                    record.id,
                    user_id,
                    call_time.isoformat(),
                    call_time.timestamp(),
                    record.direction,
                    record.source_number,
                    record.source_name,
                    record.destination_number,
                    record.duration_seconds,
                    record.disposition,
                    record.time_to_answer_seconds,
                    datetime.now(timezone.utc).isoformat()
                ))
                conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save csv call: {e}") from e

    def get_csv_call(self, csv_call_id: str) -> Optional[CandidateRecord]:
        """
        IDでCSV通話明細を取得

        Raises:
            StorageError: 取得に失敗した場合
        """
        sql = """
        SELECT id, call_time, call_direction, source_number, source_name,
               destination_number, call_duration_seconds, disposition,
               time_to_answer_seconds
        FROM csv_call_data
        WHERE id = ?
        """

        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(sql, (csv_call_id,))
                row = cursor.fetchone()

                if row is None:
                    return None

                return self._row_to_candidate(row)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get csv call: {e}") from e

    def save_call(self, call: CallRecord) -> None:
        """
        録音由来の通話を保存

        同じIDの通話が存在する場合は更新します。

        Raises:
            StorageError: 保存に失敗した場合
        """
        sql = """
        INSERT OR REPLACE INTO calls (
            id, user_id, call_time, phone_number, duration_seconds,
            csv_call_id, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """

        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(sql, (
                    call.id,
                    call.user_id,
                    to_utc(call.call_time).isoformat(),
                    call.phone_number,
                    call.duration_seconds,
                    call.csv_call_id,
                    call.created_at.isoformat(),
                    call.updated_at.isoformat()
                ))
                conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save call: {e}") from e

    def get_call(self, call_id: str) -> Optional[CallRecord]:
        """
        IDで通話を取得

        Raises:
            StorageError: 取得に失敗した場合
        """
        sql = """
        SELECT id, user_id, call_time, phone_number, duration_seconds,
               csv_call_id, created_at, updated_at
        FROM calls
        WHERE id = ?
        """

        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(sql, (call_id,))
                row = cursor.fetchone()

                if row is None:
                    return None

                return self._row_to_call(row)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get call: {e}") from e

    def find_candidates(
        self,
        user_id: str,
        observed_time: datetime,
        tolerance_minutes: float,
        exclude_linked: bool = True
    ) -> List[CandidateRecord]:
        """
        指定時刻の前後 tolerance_minutes 分以内の候補を取得

        検証に失敗した行は警告を出力してスキップします。

        Raises:
            StorageError: 取得に失敗した場合
        """
        observed_epoch = to_utc(observed_time).timestamp()
        window_seconds = tolerance_minutes * 60.0

        sql = """
        SELECT id, call_time, call_direction, source_number, source_name,
               destination_number, call_duration_seconds, disposition,
               time_to_answer_seconds
        FROM csv_call_data
        WHERE user_id = ?
          AND call_time_epoch BETWEEN ? AND ?
        """
        params: List = [user_id, observed_epoch - window_seconds, observed_epoch + window_seconds]

        if exclude_linked:
            sql += """
          AND id NOT IN (SELECT csv_call_id FROM calls WHERE csv_call_id IS NOT NULL)
        """

        sql += " ORDER BY ABS(call_time_epoch - ?)"
        params.append(observed_epoch)

        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(sql, params)
                rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to find candidates: {e}") from e

        candidates = []
        for row in rows:
            try:
                candidates.append(self._row_to_candidate(row))
            except (InvalidCandidateError, ValueError) as e:
                self.logger.warning(
                    "invalid_candidate_skipped",
                    csv_call_id=row["id"],
                    error_message=str(e)
                )
        return candidates

    def link_call(self, call_id: str, csv_call_id: str, user_id: str) -> Optional[Link]:
        """
        通話とCSV通話明細を関連付け

        calls.csv_call_id の単一カラムを更新するため、通話ごとの関連付けは
        常に1件で、再関連付けは既存の関連付けを置き換えます。

        Raises:
            StorageError: 更新に失敗した場合
        """
        check_sql = "SELECT 1 FROM csv_call_data WHERE id = ? AND user_id = ?"
        update_sql = """
        UPDATE calls
        SET csv_call_id = ?, updated_at = ?
        WHERE id = ? AND user_id = ?
        """

        linked_at = datetime.now(timezone.utc)
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(check_sql, (csv_call_id, user_id))
                if cursor.fetchone() is None:
                    return None

                cursor.execute(update_sql, (
                    csv_call_id,
                    linked_at.isoformat(),
                    call_id,
                    user_id
                ))
                conn.commit()
                if cursor.rowcount == 0:
                    return None
        except sqlite3.Error as e:
            raise StorageError(f"Failed to link call: {e}") from e

        return Link(call_id=call_id, csv_call_id=csv_call_id, linked_at=linked_at)

    def _row_to_candidate(self, row: sqlite3.Row) -> CandidateRecord:
        """
        SQLite行をCandidateRecordに変換

        Raises:
            InvalidCandidateError: 行の値が不正な場合
        """
        return CandidateRecord(
            id=row["id"],
            call_time=datetime.fromisoformat(row["call_time"]),
            direction=row["call_direction"],
            source_number=row["source_number"],
            destination_number=row["destination_number"],
            duration_seconds=row["call_duration_seconds"],
            disposition=row["disposition"],
            time_to_answer_seconds=row["time_to_answer_seconds"],
            source_name=row["source_name"]
        )

    def _row_to_call(self, row: sqlite3.Row) -> CallRecord:
        """SQLite行をCallRecordに変換"""
        return CallRecord(
            id=row["id"],
            user_id=row["user_id"],
            call_time=datetime.fromisoformat(row["call_time"]),
            phone_number=row["phone_number"],
            duration_seconds=row["duration_seconds"],
            csv_call_id=row["csv_call_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"])
        )
