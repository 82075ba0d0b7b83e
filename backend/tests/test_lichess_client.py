import unittest
from datetime import datetime, timezone

import requests

from chess_insights.errors import ExternalApiError, IncompleteFetchError, RateLimitError, UserNotFoundError
from chess_insights.lichess_client import LichessClient, count_moves
from tests.game_fixtures import lichess_game
from tests.http_fakes import FakeResponse, FakeSession, ndjson_response

GAMES_URL = "https://lichess.org/api/games/user/alice"


def build_client(routes):
    session = FakeSession(routes)
    return LichessClient(rate_limit_delay=0, session=session), session


class LichessClientTests(unittest.TestCase):
    def test_fetch_games_parses_ndjson_newest_first(self) -> None:
        response = ndjson_response([
            lichess_game(game_id="older", created_at=1704110400000),
            lichess_game(game_id="newer", created_at=1704196800000),
        ])
        client, session = build_client({GAMES_URL: response})
        games = client.fetch_games("alice")

        self.assertEqual([g.id for g in games], ["newer", "older"])
        self.assertTrue(response.closed)
        call = session.calls[0]
        self.assertTrue(call["stream"])
        self.assertEqual(call["headers"]["Accept"], "application/x-ndjson")
        self.assertEqual(call["params"]["max"], "100")
        self.assertEqual(call["params"]["clocks"], "true")

    def test_fetch_all_omits_max(self) -> None:
        client, session = build_client({GAMES_URL: ndjson_response([])})
        client.fetch_games("alice", fetch_all=True)
        self.assertNotIn("max", session.calls[0]["params"])

    def test_since_and_until_sent_as_millis(self) -> None:
        client, session = build_client({GAMES_URL: ndjson_response([])})
        client.fetch_games(
            "alice",
            since=datetime(2024, 1, 1, tzinfo=timezone.utc),
            until=datetime(2024, 1, 2, tzinfo=timezone.utc),
        )
        params = session.calls[0]["params"]
        self.assertEqual(params["since"], "1704067200000")
        self.assertEqual(params["until"], "1704153600000")

    def test_convert_game_fields(self) -> None:
        client, _ = build_client({})
        game = client.convert_game(lichess_game(), "Alice")

        self.assertEqual(game.id, "abcd1234")
        self.assertEqual(game.source, "lichess")
        self.assertEqual(game.played_at, datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc))
        self.assertEqual(game.player_color, "white")
        self.assertEqual(game.result, "win")
        self.assertEqual(game.termination, "checkmate")
        self.assertEqual(game.opening.eco, "B01")
        self.assertEqual(game.opening.name, "Scandinavian Defense")
        self.assertEqual(game.opponent.username, "Bob")
        self.assertEqual(game.opponent.rating, 1590)
        self.assertEqual(game.rating_change, 6)
        self.assertEqual(game.move_count, 3)
        self.assertEqual(game.game_url, "https://lichess.org/abcd1234")
        self.assertEqual(game.clock.initial_time, 300)
        self.assertEqual(game.clock.increment, 3)
        self.assertEqual(game.clock.move_times, (3.0, 5.0, 11.0))
        self.assertEqual(game.clock.time_remaining, 290.03)

    def test_convert_game_black_loss_with_analysis(self) -> None:
        client, _ = build_client({})
        raw = lichess_game()
        raw["players"]["black"]["analysis"] = {
            "inaccuracy": 2, "mistake": 1, "blunder": 3, "acpl": 87, "accuracy": 61,
        }
        game = client.convert_game(raw, "bob")

        self.assertEqual(game.player_color, "black")
        self.assertEqual(game.result, "loss")
        self.assertEqual(game.analysis.blunders, 3)
        self.assertEqual(game.analysis.mistakes, 1)
        self.assertEqual(game.analysis.inaccuracies, 2)
        self.assertEqual(game.analysis.acpl, 87.0)
        self.assertEqual(game.analysis.accuracy, 61.0)

    def test_draw_and_missing_fields(self) -> None:
        client, _ = build_client({})
        raw = lichess_game(winner=None, status="draw")
        del raw["opening"]
        del raw["clock"]
        raw["players"]["black"] = {"aiLevel": 3}
        game = client.convert_game(raw, "alice")

        self.assertEqual(game.result, "draw")
        self.assertEqual(game.termination, "agreement")
        self.assertEqual(game.opening.eco, "Unknown")
        self.assertIsNone(game.clock)
        self.assertEqual(game.opponent.username, "Anonymous")

    def test_bad_lines_are_skipped(self) -> None:
        response = ndjson_response([lichess_game()])
        response.lines.insert(0, "{not json")
        response.lines.append("")
        client, _ = build_client({GAMES_URL: response})
        self.assertEqual(len(client.fetch_games("alice")), 1)

    def test_interrupted_stream_keeps_partial_results(self) -> None:
        response = ndjson_response(
            [lichess_game()],
            stream_error=requests.exceptions.ChunkedEncodingError("reset"),
        )
        client, _ = build_client({GAMES_URL: response})

        with self.assertRaises(IncompleteFetchError) as ctx:
            client.fetch_games("alice")

        self.assertEqual([g.id for g in ctx.exception.games], ["abcd1234"])
        self.assertTrue(ctx.exception.retryable)
        self.assertTrue(response.closed)

    def test_unknown_user(self) -> None:
        client, _ = build_client({GAMES_URL: FakeResponse(status_code=404)})
        with self.assertRaises(UserNotFoundError):
            client.fetch_games("alice")

    def test_rate_limited(self) -> None:
        client, _ = build_client({GAMES_URL: FakeResponse(status_code=429)})
        with self.assertRaises(RateLimitError) as ctx:
            client.fetch_games("alice")
        self.assertIsNone(ctx.exception.retry_after)

    def test_server_error(self) -> None:
        client, _ = build_client({GAMES_URL: FakeResponse(status_code=503)})
        with self.assertRaises(ExternalApiError) as ctx:
            client.fetch_games("alice")
        self.assertEqual(ctx.exception.http_status, 503)

    def test_validate_user(self) -> None:
        client, _ = build_client({"https://lichess.org/api/user/alice": FakeResponse()})
        self.assertTrue(client.validate_user("alice"))
        self.assertFalse(client.validate_user("ghost"))

    def test_count_moves(self) -> None:
        self.assertEqual(count_moves("e4 d5 exd5"), 2)
        self.assertEqual(count_moves("e4 d5"), 1)
        self.assertEqual(count_moves(""), 0)
        self.assertEqual(count_moves(None), 0)
