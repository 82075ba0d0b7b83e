"""
Game synchronization across Chess.com and Lichess.

Each configured platform is synced independently: a failure on one is
recorded in its SyncSourceResult and never stops the other.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from .chess_com_client import ChessComClient
from .database import GameStore, UserStore
from .errors import AccountNotFoundError, IncompleteFetchError
from .game_data import CHESS_COM, LICHESS, SyncResult, SyncSourceResult, UserConfig
from .lichess_client import LichessClient

logger = logging.getLogger(__name__)

INCREMENTAL_OVERLAP = timedelta(seconds=1)


class SyncService:
    """Pulls new games from the platforms into the game store."""

    def __init__(
        self,
        game_store: GameStore,
        user_store: UserStore,
        chess_com_client: Optional[ChessComClient] = None,
        lichess_client: Optional[LichessClient] = None,
    ):
        self.game_store = game_store
        self.user_store = user_store
        self.chess_com_client = chess_com_client or ChessComClient()
        self.lichess_client = lichess_client or LichessClient()

    def _sources(self, user: UserConfig) -> List[Tuple[str, str, object]]:
        """(source, username, client) for each platform the user has configured."""
        sources = []
        if user.chess_com_username:
            sources.append((CHESS_COM, user.chess_com_username, self.chess_com_client))
        if user.lichess_username:
            sources.append((LICHESS, user.lichess_username, self.lichess_client))
        return sources

    def sync_games(self, user_id: int, full_sync: bool = False) -> SyncResult:
        """
        Sync every configured platform for a user.

        Args:
            user_id: Local user ID
            full_sync: Fetch the whole history instead of games newer than the
                latest stored one

        Returns:
            SyncResult; success is False if any platform failed
        """
        user = self.user_store.find_by_id(user_id)
        if user is None:
            raise AccountNotFoundError(user_id)

        result = SyncResult()
        for source, username, client in self._sources(user):
            result.add_source(self._sync_source(user_id, source, username, client, full_sync))

        if result.success:
            self.user_store.update_last_synced(user_id, datetime.now(timezone.utc))

        result.total_games_count = self.game_store.count(user_id)
        logger.info(
            f"Sync for user {user_id}: {result.new_games_count} new, "
            f"{result.total_games_count} total, success={result.success}"
        )
        return result

    def _sync_source(
        self,
        user_id: int,
        source: str,
        username: str,
        client,
        full_sync: bool,
    ) -> SyncSourceResult:
        error = None
        try:
            since = None
            if not full_sync:
                latest = self.game_store.get_latest_game_date(user_id, source)
                if latest is not None:
                    since = latest + INCREMENTAL_OVERLAP

            try:
                games = client.fetch_games(username, since=since, fetch_all=full_sync)
            except IncompleteFetchError as e:
                # Save what arrived but leave the source failed so last_synced_at stays put
                logger.warning(f"Partial {source} fetch for user {user_id} ({username}): {e}")
                games, error = e.games, str(e)

            count_before = self.game_store.count(user_id)
            self.game_store.save_many([game.with_user(user_id) for game in games])
            count_after = self.game_store.count(user_id)
        except Exception as e:
            logger.exception(f"Sync of {source} games for user {user_id} ({username}) failed")
            return SyncSourceResult(source=source, new_games=0, error=str(e))

        new_games = max(0, count_after - count_before)
        logger.info(f"Synced {source} for user {user_id}: {len(games)} fetched, {new_games} new")
        return SyncSourceResult(source=source, new_games=new_games, error=error)

    def full_resync(self, user_id: int) -> SyncResult:
        """
        Delete every stored game for the user, then sync the full history.

        The deletion is not undone if the resync fails; the result reports
        how many games were removed next to whatever was re-fetched.
        """
        if self.user_store.find_by_id(user_id) is None:
            raise AccountNotFoundError(user_id)

        deleted = self.game_store.delete_by_user(user_id)
        result = self.sync_games(user_id, full_sync=True)
        result.deleted_games_count = deleted
        if not result.success:
            logger.warning(
                f"Full resync for user {user_id} deleted {deleted} games and only "
                f"restored {result.total_games_count}"
            )
        return result

    def validate_usernames(
        self,
        chess_com_username: Optional[str] = None,
        lichess_username: Optional[str] = None,
    ) -> Dict[str, bool]:
        """Check the given platform usernames exist; only given names are checked."""
        results = {}
        if chess_com_username:
            results[CHESS_COM] = self.chess_com_client.validate_user(chess_com_username)
        if lichess_username:
            results[LICHESS] = self.lichess_client.validate_user(lichess_username)
        return results
