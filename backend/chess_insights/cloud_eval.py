"""
Lichess cloud evaluation client.

The cloud-eval endpoint serves cached deep evaluations for positions that
have been analyzed before. A miss is normal and is reported as None.
"""
import logging
from typing import Any, Dict, Optional

import requests

from . import config
from .game_data import Evaluation

logger = logging.getLogger(__name__)

MATE_SCORE = 10000


def mate_to_score(mate: int) -> int:
    """Fold a mate distance into a centipawn score (White POV)."""
    if mate > 0:
        return MATE_SCORE - mate
    return -MATE_SCORE - mate


def format_score(score: int, mate: Optional[int] = None) -> str:
    """Human readable evaluation, e.g. "+1.25" or "M-3"."""
    if mate is not None:
        return f"M{mate}"
    pawns = score / 100
    return f"+{pawns:.2f}" if pawns > 0 else f"{pawns:.2f}"


class CloudEvalClient:
    """Client for the Lichess cloud evaluation API."""

    URL = "https://lichess.org/api/cloud-eval"

    def __init__(
        self,
        timeout: float = config.REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': config.USER_AGENT
        })

    def get_cloud_eval(self, fen: str, multi_pv: int = 1) -> Optional[Evaluation]:
        """
        Look up a cached evaluation.

        Args:
            fen: Position to look up
            multi_pv: Number of principal variations to request

        Returns:
            Evaluation from the first PV, or None when the position is not
            cached or the service could not be reached
        """
        try:
            response = self.session.get(
                self.URL,
                params={'fen': fen, 'multiPv': multi_pv},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Cloud eval request failed: {e}")
            return None

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            logger.warning(f"Cloud eval returned HTTP {response.status_code} for {fen}")
            return None

        try:
            data = response.json()
        except ValueError as e:
            logger.warning(f"Cloud eval returned invalid JSON: {e}")
            return None

        return parse_cloud_eval(data)


def parse_cloud_eval(data: Dict[str, Any]) -> Optional[Evaluation]:
    """Build an Evaluation from a cloud-eval payload."""
    pvs = data.get('pvs') or []
    if not pvs:
        return None

    top = pvs[0]
    moves = tuple((top.get('moves') or '').split())
    mate = top.get('mate')
    if mate is not None:
        score = mate_to_score(int(mate))
    else:
        score = int(top.get('cp', 0))

    return Evaluation(
        score=score,
        best_move=moves[0] if moves else '',
        depth=int(data.get('depth', 0)),
        mate=int(mate) if mate is not None else None,
        pv=moves,
        source='cloud',
    )
