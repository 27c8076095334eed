"""
関連付けコミットモジュール (Link Committer Module)

ユーザーが確定した (通話, CSV通話明細) の組をストレージに記録します。
"""

from typing import Optional

import structlog

from .models import Link
from .storage import Storage


class LinkError(Exception):
    """関連付けエラー"""
    pass


class LinkNotFoundError(LinkError):
    """
    関連付け対象が見つからないエラー

    通話またはCSV通話明細が存在しない、もしくはユーザーに属さない場合に発生します。
    """

    def __init__(self, call_id: str, csv_call_id: str):
        super().__init__(
            f"Call {call_id} or csv call {csv_call_id} not found or access denied"
        )
        self.call_id = call_id
        self.csv_call_id = csv_call_id


class LinkCommitter:
    """
    通話とCSV通話明細の関連付けを確定するクラス

    1つの通話に対して有効な関連付けは常に1件です。
    同じ組を再度コミットしても結果は変わらず、別のCSV行へ
    コミットした場合は既存の関連付けを置き換えます。
    失敗時の再試行は行いません。

    Attributes:
        storage: 関連付けを永続化するストレージ
    """

    def __init__(self, storage: Storage):
        self.storage = storage
        self.logger = structlog.get_logger(__name__)

    def get_link(self, call_id: str) -> Optional[Link]:
        """現在の関連付けを取得（未関連付けの場合はNone）"""
        call = self.storage.get_call(call_id)
        if call is None or call.csv_call_id is None:
            return None
        return Link(call_id=call.id, csv_call_id=call.csv_call_id, linked_at=call.updated_at)

    def commit(self, call_id: str, csv_call_id: str, user_id: str) -> Link:
        """
        関連付けを確定

        Args:
            call_id: 通話ID
            csv_call_id: CSV通話明細ID
            user_id: 操作するユーザーID

        Returns:
            確定した関連付け

        Raises:
            LinkNotFoundError: 通話またはCSV行が見つからない場合
            StorageError: ストレージ操作に失敗した場合
        """
        call = self.storage.get_call(call_id)
        if call is None or call.user_id != user_id:
            self.logger.warning(
                "link_target_not_found",
                call_id=call_id,
                csv_call_id=csv_call_id
            )
            raise LinkNotFoundError(call_id, csv_call_id)

        if call.csv_call_id == csv_call_id:
            self.logger.info(
                "call_already_linked",
                call_id=call_id,
                csv_call_id=csv_call_id
            )
            return Link(call_id=call.id, csv_call_id=csv_call_id, linked_at=call.updated_at)

        link = self.storage.link_call(call_id, csv_call_id, user_id)
        if link is None:
            self.logger.warning(
                "link_target_not_found",
                call_id=call_id,
                csv_call_id=csv_call_id
            )
            raise LinkNotFoundError(call_id, csv_call_id)

        if call.csv_call_id is not None:
            self.logger.info(
                "call_link_replaced",
                call_id=call_id,
                previous_csv_call_id=call.csv_call_id,
                csv_call_id=csv_call_id
            )

        self.logger.info(
            "call_linked",
            call_id=call_id,
            csv_call_id=csv_call_id,
            linked_at=link.linked_at.isoformat()
        )
        return link
