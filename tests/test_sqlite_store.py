import os
import sqlite3
import tempfile
import threading
import time
import unittest

from domain.errors import StoreBusyError, StoreError
from domain.models import Phase, Vote
from infrastructure.db.connection import classify_sqlite_error
from infrastructure.db.store import SessionPool, SqliteStore


class SqliteStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self._tmpdir.name, "hackathon.db")
        self.store = SqliteStore(self.db_path, busy_timeout_ms=0)
        self.sessions = []

    def tearDown(self) -> None:
        for session in self.sessions:
            session.close()
        self._tmpdir.cleanup()

    def open_session(self):
        session = self.store.open_session()
        self.sessions.append(session)
        return session


class RepositoryTests(SqliteStoreTestCase):
    def test_schema_is_created_once(self):
        self.open_session()
        # A second session must not fail on the existing tables.
        self.open_session()
        conn = sqlite3.connect(self.db_path)
        try:
            tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
            journal_mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        finally:
            conn.close()
        self.assertTrue({"teams", "team_memberships", "votes", "cheaters", "progress"} <= tables)
        self.assertEqual(journal_mode, "wal")

    def test_teams_and_memberships(self):
        tx = self.open_session().begin()
        zebra = tx.teams.add_team("Zebra", "alice@example.com", "Stripes.")
        apple = tx.teams.add_team("apple", "bob@example.com", "")
        tx.teams.add_team_member(zebra, "alice@example.com")
        tx.teams.add_team_member(zebra, "carol@example.com")
        # Joining twice does nothing.
        tx.teams.add_team_member(zebra, "alice@example.com")
        tx.teams.add_team_member(apple, "bob@example.com")

        team = tx.teams.get_team(zebra)
        self.assertEqual(team.name, "Zebra")
        self.assertEqual(team.description, "Stripes.")
        self.assertEqual(team.members, ["alice@example.com", "carol@example.com"])
        self.assertIsNotNone(team.created_at)

        self.assertEqual([t.name for t in tx.teams.get_all_teams()], ["apple", "Zebra"])
        self.assertEqual(tx.teams.find_team_by_name("ZEBRA").id, zebra)
        self.assertIsNone(tx.teams.find_team_by_name("Mango"))
        self.assertEqual(tx.teams.count_teams_by_creator("alice@example.com"), 1)
        self.assertEqual(tx.teams.get_teams_for_member("carol@example.com"), [zebra])

        tx.teams.remove_team_member(zebra, "carol@example.com")
        self.assertEqual(tx.teams.get_team(zebra).members, ["alice@example.com"])
        tx.commit()

    def test_team_names_are_unique(self):
        tx = self.open_session().begin()
        tx.teams.add_team("Rocket", "alice@example.com", "")
        with self.assertRaises(StoreError) as ctx:
            tx.teams.add_team("Rocket", "bob@example.com", "")
        self.assertFalse(ctx.exception.busy)
        tx.rollback()

    def test_votes_and_totals(self):
        tx = self.open_session().begin()
        a = tx.teams.add_team("A", "a@example.com", "")
        b = tx.teams.add_team("B", "b@example.com", "")
        c = tx.teams.add_team("C", "c@example.com", "")
        tx.votes.add_vote(Vote("x@example.com", a, 3))
        tx.votes.add_vote(Vote("x@example.com", b, -2))
        tx.votes.add_vote(Vote("y@example.com", a, 4))

        self.assertEqual(tx.votes.get_votes_by_voter("x@example.com"), {a: 3, b: -2})
        self.assertEqual(tx.votes.get_points_per_team(), {a: 7, b: -2, c: 0})

        with self.assertRaises(StoreError):
            tx.votes.add_vote(Vote("x@example.com", a, 1))

        tx.votes.delete_votes_by_voter("x@example.com")
        self.assertEqual(tx.votes.get_votes_by_voter("x@example.com"), {})
        tx.votes.delete_votes_for_team(a)
        self.assertEqual(tx.votes.get_points_per_team(), {a: 0, b: 0, c: 0})
        tx.rollback()

    def test_cheater_flag_is_idempotent(self):
        tx = self.open_session().begin()
        self.assertEqual(tx.votes.get_cheaters(), [])
        tx.votes.flag_cheater("a@example.com")
        tx.votes.flag_cheater("a@example.com")
        self.assertEqual(tx.votes.get_cheaters(), ["a@example.com"])
        tx.commit()

    def test_phase_log_returns_latest(self):
        tx = self.open_session().begin()
        self.assertIsNone(tx.phases.get_current_phase())
        tx.phases.set_current_phase(Phase.PRESENTATION)
        tx.phases.set_current_phase(Phase.EVALUATION)
        self.assertEqual(tx.phases.get_current_phase(), "evaluation")
        tx.commit()

    def test_foreign_keys_are_enforced(self):
        tx = self.open_session().begin()
        team_id = tx.teams.add_team("A", "a@example.com", "")
        tx.teams.add_team_member(team_id, "a@example.com")
        with self.assertRaises(StoreError):
            tx.teams.delete_team(team_id)
        with self.assertRaises(StoreError):
            tx.votes.add_vote(Vote("x@example.com", 999, 1))
        tx.rollback()

    def test_committed_data_is_visible_to_other_sessions(self):
        writer = self.open_session()
        reader = self.open_session()

        tx = writer.begin()
        team_id = tx.teams.add_team("A", "a@example.com", "")
        tx.commit()

        tx = reader.begin()
        self.assertEqual(tx.teams.get_team(team_id).name, "A")
        tx.rollback()

    def test_rolled_back_data_is_gone(self):
        session = self.open_session()
        tx = session.begin()
        tx.teams.add_team("A", "a@example.com", "")
        tx.rollback()

        tx = session.begin()
        self.assertEqual(tx.teams.get_all_teams(), [])
        tx.rollback()


class ContentionTests(SqliteStoreTestCase):
    def test_second_writer_sees_busy(self):
        first = self.open_session()
        second = self.open_session()

        tx = first.begin()
        with self.assertRaises(StoreBusyError):
            second.begin()
        tx.commit()

        second.begin().rollback()


class ClassifyErrorTests(unittest.TestCase):
    def test_locked_database_is_busy(self):
        error = classify_sqlite_error(sqlite3.OperationalError("database is locked"))
        self.assertIsInstance(error, StoreBusyError)
        self.assertTrue(error.busy)

    def test_other_errors_are_not_busy(self):
        error = classify_sqlite_error(sqlite3.DatabaseError("database disk image is malformed"))
        self.assertNotIsInstance(error, StoreBusyError)
        self.assertFalse(error.busy)

    def test_real_syntax_error_is_not_busy(self):
        conn = sqlite3.connect(":memory:")
        try:
            with self.assertRaises(sqlite3.Error) as ctx:
                conn.execute("SELEKT 1")
        finally:
            conn.close()
        self.assertFalse(classify_sqlite_error(ctx.exception).busy)


class SessionPoolTests(SqliteStoreTestCase):
    def test_session_is_reused_until_discarded(self):
        pool = SessionPool(self.store, 1)
        first = pool.acquire()
        pool.release(first)
        self.assertIs(pool.acquire(), first)

        pool.discard(first)
        second = pool.acquire()
        self.assertIsNot(second, first)
        self.assertEqual(pool.open_sessions, [second])
        pool.release(second)
        pool.close_all()
        self.assertEqual(pool.open_sessions, [])

    def test_failed_open_frees_the_slot(self):
        pool = SessionPool(SqliteStore(os.path.join(self._tmpdir.name, "missing", "x.db")), 1)
        for _ in range(2):
            with self.assertRaises(StoreError):
                pool.acquire()
        self.assertEqual(pool.open_sessions, [])

    def test_short_lived_threads_share_a_bounded_pool(self):
        pool = SessionPool(self.store, 2)
        peak = []

        def work():
            session = pool.acquire()
            try:
                peak.append(len(pool.open_sessions))
                time.sleep(0.01)
            finally:
                pool.release(session)

        # Every burst runs on brand new threads, like a thread pool that
        # retires idle workers.
        for _ in range(10):
            threads = [threading.Thread(target=work) for _ in range(4)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        self.assertEqual(len(peak), 40)
        self.assertLessEqual(max(peak), 2)
        self.assertLessEqual(len(pool.open_sessions), 2)
        pool.close_all()

if __name__ == "__main__":
    unittest.main()
