import os
import tempfile
import unittest
from concurrent.futures import ThreadPoolExecutor
from unittest import mock

from fastapi.testclient import TestClient

from domain.errors import StoreError
from domain.models import AntiCheatPolicy
from infrastructure.config import Config
from interfaces.web.app import create_web_app

ADMIN = {"X-Email": "admin@example.com"}
ALICE = {"X-Email": "alice@example.com"}
BOB = {"X-Email": "bob@example.com"}


class WebAppTestCase(unittest.TestCase):
    url_prefix = ""
    unsafe_default_email = None
    num_threads = 1
    db_busy_timeout_ms = 30

    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        config = Config(
            admin_email="admin@example.com",
            email_suffix="@example.com",
            max_teams_per_creator=1,
            coins_to_spend=100,
            anti_cheat_policy=AntiCheatPolicy.ZERO,
            unsafe_default_email=self.unsafe_default_email,
            url_prefix=self.url_prefix,
            num_threads=self.num_threads,
            db_path=os.path.join(self._tmpdir.name, "hackathon.db"),
            db_busy_timeout_ms=self.db_busy_timeout_ms,
        )
        self.app = create_web_app(config)
        self.client = TestClient(self.app)
        self.client.__enter__()

    def tearDown(self) -> None:
        self.client.__exit__(None, None, None)
        self._tmpdir.cleanup()

    def post(self, path, headers, data=None):
        return self.client.post(
            self.url_prefix + path,
            headers=headers,
            data=data or {},
            follow_redirects=False,
        )

    def overview(self, headers):
        response = self.client.get(self.url_prefix + "/", headers=headers)
        self.assertEqual(response.status_code, 200)
        return response.json()

    def create_team(self, headers, name):
        response = self.post("/create-team", headers, {"name": name, "description": "Hi."})
        self.assertEqual(response.status_code, 303)
        teams = self.overview(headers)["teams"]
        return next(t["id"] for t in teams if t["name"] == name)

    def advance(self, times):
        for _ in range(times):
            self.assertEqual(self.post("/next", ADMIN).status_code, 303)


class WebAppTests(WebAppTestCase):
    def test_missing_identity_is_unauthorized(self):
        response = self.client.get("/")
        self.assertEqual(response.status_code, 401)

    def test_empty_overview(self):
        overview = self.overview(ALICE)
        self.assertEqual(overview["phase"], "registration")
        self.assertEqual(overview["email"], "alice@example.com")
        self.assertFalse(overview["is_admin"])
        self.assertEqual(overview["teams"], [])
        self.assertEqual(overview["max_points_per_team"], 10)
        self.assertIsNone(overview["results"])
        self.assertTrue(self.overview(ADMIN)["is_admin"])

    def test_team_lifecycle(self):
        team_id = self.create_team(ALICE, "Rocket")
        self.assertEqual(self.post("/join-team", BOB, {"team_id": str(team_id)}).status_code, 303)

        team = self.overview(BOB)["teams"][0]
        self.assertEqual(team["members"], ["alice", "bob"])
        self.assertTrue(team["is_member"])

        # Not the last member, so deleting is refused and nothing changes.
        response = self.post("/delete-team", ALICE, {"team_id": str(team_id)})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(len(self.overview(ALICE)["teams"]), 1)

        self.assertEqual(self.post("/leave-team", BOB, {"team_id": str(team_id)}).status_code, 303)
        self.assertEqual(self.post("/delete-team", ALICE, {"team_id": str(team_id)}).status_code, 303)
        self.assertEqual(self.overview(ALICE)["teams"], [])

    def test_invalid_team_id(self):
        for raw in ["", "abc", "-1", "0", "01", "+1", "99999999999999999999999"]:
            with self.subTest(raw=raw):
                response = self.post("/join-team", ALICE, {"team_id": raw})
                self.assertEqual(response.status_code, 400)

    def test_join_missing_team(self):
        response = self.post("/join-team", ALICE, {"team_id": "42"})
        self.assertEqual(response.status_code, 404)

    def test_validation_failure_is_rolled_back(self):
        response = self.post("/create-team", ALICE, {"name": "<b>bold</b>"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.overview(ALICE)["teams"], [])

    def test_only_admin_changes_phase(self):
        self.assertEqual(self.post("/next", ALICE).status_code, 403)
        self.assertEqual(self.overview(ALICE)["phase"], "registration")

        phases = []
        for _ in range(5):
            self.post("/next", ADMIN)
            phases.append(self.overview(ADMIN)["phase"])
        self.assertEqual(
            phases,
            ["presentation", "evaluation", "revelation", "celebration", "celebration"],
        )

        self.assertEqual(self.post("/prev", ADMIN).status_code, 303)
        self.assertEqual(self.overview(ALICE)["phase"], "revelation")

    def test_voting_round(self):
        rocket = self.create_team(ALICE, "Rocket")
        boat = self.create_team(BOB, "Boat")
        self.advance(2)

        carol = {"X-Email": "carol@example.com"}
        response = self.post("/vote", carol, {f"team-{rocket}": "7", f"team-{boat}": "7"})
        self.assertEqual(response.status_code, 303)

        response = self.post("/vote", carol, {f"team-{rocket}": "8", f"team-{boat}": "8"})
        self.assertEqual(response.status_code, 400)
        overview = self.overview(carol)
        self.assertEqual({t["id"]: t["points"] for t in overview["teams"]}, {rocket: 7, boat: 7})
        self.assertEqual(overview["coins_left"], 2)

        # Alice votes for her own team and gets caught.
        response = self.post("/vote", ALICE, {f"team-{rocket}": "5", f"team-{boat}": "1"})
        self.assertEqual(response.status_code, 303)
        points = {t["id"]: t["points"] for t in self.overview(ALICE)["teams"]}
        self.assertEqual(points, {rocket: 0, boat: 1})

        self.assertIsNone(self.overview(ADMIN)["results"])
        self.advance(1)
        self.assertIsNone(self.overview(ALICE)["results"])

        overview = self.overview(ADMIN)
        self.assertEqual(overview["cheaters"], ["alice@example.com"])
        # Revealed in reverse.
        self.assertEqual(
            [(r["rank"], r["team_id"], r["points"]) for r in overview["results"]],
            [(2, rocket, 7), (1, boat, 8)],
        )

        self.advance(1)
        overview = self.overview(ALICE)
        self.assertEqual(
            [(r["rank"], r["team_id"]) for r in overview["results"]],
            [(1, boat), (2, rocket)],
        )
        self.assertIsNone(overview["cheaters"])

    def test_bad_ballot_is_rejected_before_the_store(self):
        self.advance(2)
        response = self.post("/vote", ALICE, {"team-1": "lots"})
        self.assertEqual(response.status_code, 400)


class SessionHandlingTests(WebAppTestCase):
    num_threads = 2
    db_busy_timeout_ms = 1000

    def test_fatal_store_error_replaces_the_session(self):
        self.overview(ALICE)
        sessions = self.app.state.sessions
        [first] = sessions.open_sessions

        with mock.patch(
            "interfaces.web.app.build_overview",
            side_effect=StoreError("disk I/O error"),
        ):
            response = self.client.get("/", headers=ALICE)
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.text, "Internal server error.")
        self.assertEqual(sessions.open_sessions, [])

        # The next request gets a fresh session and succeeds.
        self.assertEqual(self.overview(ALICE)["phase"], "registration")
        [second] = sessions.open_sessions
        self.assertIsNot(second, first)

    def test_bursts_of_requests_stay_within_the_pool(self):
        def fetch(_):
            return self.client.get("/", headers=ALICE).status_code

        with ThreadPoolExecutor(max_workers=4) as executor:
            for _ in range(10):
                self.assertEqual(list(executor.map(fetch, range(4))), [200] * 4)
                self.assertLessEqual(len(self.app.state.sessions.open_sessions), self.num_threads)


class PrefixedWebAppTests(WebAppTestCase):
    url_prefix = "/hack"
    unsafe_default_email = "dev@example.com"

    def test_routes_live_under_prefix(self):
        self.assertEqual(self.client.get("/", headers=ALICE).status_code, 404)
        self.assertEqual(self.overview(ALICE)["email"], "alice@example.com")

    def test_fallback_identity(self):
        response = self.client.get("/hack/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["email"], "dev@example.com")

    def test_success_redirects_to_index(self):
        response = self.post("/create-team", ALICE, {"name": "Rocket"})
        self.assertEqual(response.status_code, 303)
        self.assertEqual(response.headers["location"], "/hack/")


if __name__ == "__main__":
    unittest.main()
