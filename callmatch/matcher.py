"""
突き合わせオーケストレーターモジュール (Match Orchestrator Module)

録音の観測メタデータと候補プールを受け取り、
採点 → 一致理由 → ランキング の順に処理して候補リストを返します。
"""

from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

import structlog

from .models import CandidateRecord, MatchOptions, Recording, ScoredMatch
from .ranking import rank_matches
from .reasons import build_match_reasons
from .scoring import (
    calculate_match_score,
    duration_diff_seconds,
    phone_number_matches,
    time_diff_minutes,
)


DEFAULT_MIN_SCORE = 0.7
DEFAULT_PARALLEL_THRESHOLD = 200
DEFAULT_MAX_WORKERS = 4


def is_valid_match(score: float, threshold: float = DEFAULT_MIN_SCORE) -> bool:
    """スコアが閾値以上かどうか"""
    return score >= threshold


def score_candidate(
    recording: Recording,
    candidate: CandidateRecord,
    options: MatchOptions
) -> ScoredMatch:
    """
    候補1件を採点し、一致理由を付けた ScoredMatch を作成

    Args:
        recording: 録音の観測メタデータ
        candidate: 候補レコード
        options: 突き合わせオプション

    Returns:
        ScoredMatch
    """
    score = calculate_match_score(recording, candidate, options)
    diff_minutes = time_diff_minutes(recording.observed_time, candidate.call_time)
    diff_seconds = duration_diff_seconds(recording.duration_seconds, candidate.duration_seconds)
    phone_matched = phone_number_matches(recording.phone_number, candidate)

    return ScoredMatch(
        candidate=candidate,
        score=score,
        time_diff_minutes=diff_minutes,
        duration_diff_seconds=diff_seconds,
        match_reasons=build_match_reasons(diff_minutes, diff_seconds, phone_matched),
    )


class MatchOrchestrator:
    """
    突き合わせ処理のエントリーポイント

    I/O を行わず、候補プールは呼び出し側がメモリ上で渡します。
    候補数が parallel_threshold 以上の場合は、順序を保ったまま
    バッチ単位でスレッドプールに採点を分散します。ランキングは
    全候補の採点が揃ってから一度だけ行います。

    Attributes:
        parallel_threshold: 並列採点を開始する候補数（0 で無効）
        max_workers: 並列採点のワーカー数
    """

    def __init__(
        self,
        parallel_threshold: int = DEFAULT_PARALLEL_THRESHOLD,
        max_workers: int = DEFAULT_MAX_WORKERS
    ):
        self.parallel_threshold = parallel_threshold
        self.max_workers = max_workers
        self.logger = structlog.get_logger(__name__)

    def find_and_rank(
        self,
        recording: Recording,
        candidates: Sequence[CandidateRecord],
        options: Optional[MatchOptions] = None
    ) -> List[ScoredMatch]:
        """
        候補を採点し、順位順に並べて返す

        Args:
            recording: 録音の観測メタデータ
            candidates: 候補プール（順序は問わない）
            options: 突き合わせオプション（None の場合は既定値）

        Returns:
            順位順の ScoredMatch リスト（候補がない場合は空リスト）
        """
        if options is None:
            options = MatchOptions()

        if not candidates:
            self.logger.debug("no_candidates", observed_time=recording.observed_time.isoformat())
            return []

        if self.parallel_threshold and len(candidates) >= self.parallel_threshold:
            scored = self._score_parallel(recording, candidates, options)
        else:
            scored = [score_candidate(recording, c, options) for c in candidates]

        ranked = rank_matches(scored)

        self.logger.debug(
            "matches_ranked",
            candidate_count=len(ranked),
            top_candidate_id=ranked[0].candidate.id,
            top_score=round(ranked[0].score, 4)
        )

        return ranked

    def best_match(
        self,
        ranked_matches: Sequence[ScoredMatch],
        min_score: float = DEFAULT_MIN_SCORE
    ) -> Optional[ScoredMatch]:
        """
        自動判定用に最上位の候補を返す

        最上位候補のスコアが min_score 未満、または候補がない場合は None を返します。
        """
        if not ranked_matches:
            return None

        top = ranked_matches[0]
        if not is_valid_match(top.score, min_score):
            self.logger.info(
                "best_match_below_threshold",
                candidate_id=top.candidate.id,
                score=round(top.score, 4),
                min_score=min_score
            )
            return None

        self.logger.info(
            "best_match_selected",
            candidate_id=top.candidate.id,
            score=round(top.score, 4),
            min_score=min_score
        )
        return top

    def _score_parallel(
        self,
        recording: Recording,
        candidates: Sequence[CandidateRecord],
        options: MatchOptions
    ) -> List[ScoredMatch]:
        """候補をバッチに分け、スレッドプールで採点（入力順を保持）"""
        workers = max(1, self.max_workers)
        batch_size = max(1, -(-len(candidates) // workers))
        batches = [
            candidates[i:i + batch_size]
            for i in range(0, len(candidates), batch_size)
        ]

        self.logger.debug(
            "parallel_scoring_started",
            candidate_count=len(candidates),
            batches=len(batches),
            max_workers=workers
        )

        def score_batch(batch: Sequence[CandidateRecord]) -> List[ScoredMatch]:
            return [score_candidate(recording, c, options) for c in batch]

        scored: List[ScoredMatch] = []
        with ThreadPoolExecutor(max_workers=workers) as executor:
            for batch_result in executor.map(score_batch, batches):
                scored.extend(batch_result)
        return scored
