import threading

from _support_api import StoreTestCase, store

from aorta_server import lifecycle
from aorta_server.config import SmtpSettings
from aorta_server.errors import (
    DuplicateId,
    InvalidId,
    InvalidRole,
    MalformedBody,
    MissingField,
    MissingId,
    MissingTester,
    NotFound,
    TesterLacksRole,
    TesterMismatch,
    UnknownJob,
    UnknownOrder,
    UnknownTester,
)
from aorta_server.ids import ORDER_ID_ANCHOR_MS, new_order_id
from aorta_server.notify import Notifier


class RecordingNotifier:
    def __init__(self):
        self.reports = []

    def notify_report(self, conn, report):
        self.reports.append(report["id"])


class TestNamedResources(StoreTestCase):
    def test_script_create_and_replace(self):
        with self.connect() as conn:
            lifecycle.create_named(conn, "script", "asp09", {"what": "ASP09 procedure"})
            with self.assertRaises(DuplicateId):
                lifecycle.create_named(conn, "script", "asp09", {"what": "again"})
            lifecycle.create_named(conn, "script", "asp09", '{"what": "revised"}', replace=True)
            self.assertEqual(lifecycle.get_resource(conn, "script", "asp09")["what"], "revised")
            items = lifecycle.list_resources(conn, "script")
            self.assertEqual(items, [{"id": "asp09", "description": "revised"}])

    def test_named_validation(self):
        with self.connect() as conn:
            with self.assertRaises(InvalidId):
                lifecycle.create_named(conn, "batch", "Big-Batch", {"what": "x"})
            with self.assertRaises(MissingField):
                lifecycle.create_named(conn, "batch", "b1", {})
            with self.assertRaises(MalformedBody):
                lifecycle.create_named(conn, "batch", "b1", "[1, 2]")
            with self.assertRaises(MalformedBody):
                lifecycle.create_named(conn, "batch", "b1", "{not json")

    def test_users(self):
        with self.connect() as conn:
            lifecycle.create_user(conn, {"id": "dana", "authCode": "d4", "roles": "test, read"})
            user = lifecycle.get_resource(conn, "user", "dana")
            self.assertEqual(user["roles"], ["test", "read"])
            self.assertNotIn("authCode", user)
            with self.assertRaises(InvalidRole):
                lifecycle.create_user(conn, {"id": "eve", "authCode": "e", "roles": ["root"]})
            with self.assertRaises(MissingField):
                lifecycle.create_user(conn, {"id": "eve", "roles": []})
            with self.assertRaises(DuplicateId):
                lifecycle.create_user(conn, {"id": "dana", "authCode": "x"})

    def test_remove(self):
        with self.connect() as conn:
            lifecycle.create_named(conn, "script", "s1", {"what": "x"})
            lifecycle.remove_resource(conn, "script", "s1")
            with self.assertRaises(NotFound):
                lifecycle.remove_resource(conn, "script", "s1")
            with self.assertRaises(NotFound):
                lifecycle.get_resource(conn, "script", "s1")


class TestOrders(StoreTestCase):
    def test_order_ids(self):
        self.assertEqual(new_order_id(ORDER_ID_ANCHOR_MS), "0")
        self.assertEqual(new_order_id(ORDER_ID_ANCHOR_MS + 36 * 200), "10")
        self.assertLess(new_order_id(ORDER_ID_ANCHOR_MS + 36 * 200), new_order_id(ORDER_ID_ANCHOR_MS + 37 * 200))

    def test_order_embeds_script_and_batch(self):
        with self.connect() as conn:
            store.write_record(conn, "script", "s1", {"what": "script one"})
            order_id = lifecycle.create_order(conn, "alice", {"scriptName": "s1", "batchName": "nob"})
            order = lifecycle.get_resource(conn, "order", order_id)
        self.assertEqual(order["creator"], "alice")
        self.assertEqual(order["script"], {"what": "script one"})
        self.assertTrue(order["scriptIsValid"])
        self.assertEqual(order["batch"], {})
        self.assertFalse(order["batchIsValid"])
        self.assertTrue(order["creationTime"].endswith("Z"))

    def test_same_tick_takes_next_id(self):
        now = ORDER_ID_ANCHOR_MS + 1000
        with self.connect() as conn:
            first = lifecycle.create_order(conn, "alice", {"scriptName": "s1"}, now_ms=now)
            second = lifecycle.create_order(conn, "alice", {"scriptName": "s1"}, now_ms=now)
            self.assertEqual(first, new_order_id(now))
            self.assertEqual(second, new_order_id(now + 200))
            self.assertEqual(lifecycle.get_resource(conn, "order", second)["id"], second)

    def test_no_free_id(self):
        now = ORDER_ID_ANCHOR_MS + 5000
        with self.connect() as conn:
            for _ in range(lifecycle.ORDER_ID_ATTEMPTS):
                lifecycle.create_order(conn, "alice", {"scriptName": "s1"}, now_ms=now)
            with self.assertRaises(DuplicateId):
                lifecycle.create_order(conn, "alice", {"scriptName": "s1"}, now_ms=now)

    def test_order_validation(self):
        with self.connect() as conn:
            with self.assertRaises(MissingField):
                lifecycle.create_order(conn, "alice", {})
            with self.assertRaises(InvalidId):
                lifecycle.create_order(conn, "alice", {"scriptName": "../s"})


class TestAssignAndComplete(StoreTestCase):
    def _order(self, conn, now_ms=None):
        return lifecycle.create_order(conn, "alice", {"scriptName": "asp09"}, now_ms=now_ms)

    def test_assign_moves_order_to_job(self):
        with self.connect() as conn:
            order_id = self._order(conn)
            job = lifecycle.assign_order(conn, order_id, "adam", "bob")
            self.assertFalse(store.exists(conn, "order", order_id))
            self.assertEqual(lifecycle.get_resource(conn, "job", order_id), job)
        self.assertEqual(job["assigner"], "adam")
        self.assertEqual(job["tester"], "bob")
        self.assertEqual(job["creator"], "alice")
        self.assertEqual((job["log"], job["reports"]), ([], []))

    def test_assign_errors(self):
        with self.connect() as conn:
            order_id = self._order(conn)
            with self.assertRaises(UnknownTester):
                lifecycle.assign_order(conn, order_id, "adam", "zed")
            with self.assertRaises(UnknownTester):
                lifecycle.assign_order(conn, order_id, "adam", None)
            with self.assertRaises(TesterLacksRole):
                lifecycle.assign_order(conn, order_id, "adam", "alice")
            self.assertTrue(store.exists(conn, "order", order_id))
            lifecycle.assign_order(conn, order_id, "adam", "bob")
            with self.assertRaises(UnknownOrder):
                lifecycle.assign_order(conn, order_id, "adam", "carol")

    def test_concurrent_assign_one_wins(self):
        with self.connect() as conn:
            order_id = self._order(conn)
        outcomes = []

        def assign(tester):
            with self.connect() as conn:
                try:
                    lifecycle.assign_order(conn, order_id, "adam", tester)
                    outcomes.append(tester)
                except UnknownOrder:
                    outcomes.append(None)

        threads = [threading.Thread(target=assign, args=(t,)) for t in ("bob", "carol") * 4]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        winners = [o for o in outcomes if o]
        self.assertEqual(len(winners), 1)
        with self.connect() as conn:
            self.assertEqual(lifecycle.get_resource(conn, "job", order_id)["tester"], winners[0])

    def test_complete_job(self):
        notifier = RecordingNotifier()
        with self.connect() as conn:
            order_id = self._order(conn)
            lifecycle.assign_order(conn, order_id, "adam", "bob")
            with self.assertRaises(TesterMismatch):
                lifecycle.complete_job(conn, order_id, "carol", [{"id": "r1"}])
            with self.assertRaises(MissingField):
                lifecycle.complete_job(conn, order_id, "bob", [])
            written = lifecycle.complete_job(conn, order_id, "bob", [{"id": "r1", "score": 3}], notifier=notifier)
            self.assertEqual(written, ["r1"])
            report = lifecycle.get_resource(conn, "report", "r1")
            self.assertFalse(store.exists(conn, "job", order_id))
            with self.assertRaises(UnknownJob):
                lifecycle.complete_job(conn, order_id, "bob", [{"id": "r2"}])
        self.assertEqual(report["tester"], "bob")
        self.assertEqual(report["jobID"], order_id)
        self.assertEqual(report["scriptName"], "asp09")
        self.assertEqual(report["creator"], "alice")
        self.assertEqual(notifier.reports, ["r1"])

    def test_complete_job_is_all_or_nothing(self):
        with self.connect() as conn:
            store.write_record(conn, "report", "taken", {"id": "taken", "tester": "bob"})
            order_id = self._order(conn)
            lifecycle.assign_order(conn, order_id, "adam", "bob")
            with self.assertRaises(DuplicateId):
                lifecycle.complete_job(conn, order_id, "bob", [{"id": "fresh"}, {"id": "taken"}])
            with self.assertRaises(DuplicateId):
                lifecycle.complete_job(conn, order_id, "bob", [{"id": "twice"}, {"id": "twice"}])
            self.assertFalse(store.exists(conn, "report", "fresh"))
            self.assertFalse(store.exists(conn, "report", "twice"))
            self.assertTrue(store.exists(conn, "job", order_id))

    def test_run_job_single(self):
        def executor(work):
            work["log"].append("started")
            work["reports"].append({"id": "ignored", "score": {"deficit": {"total": 1}}})

        with self.connect() as conn:
            order_id = self._order(conn)
            lifecycle.assign_order(conn, order_id, "adam", "bob")
            written = lifecycle.run_job(conn, order_id, "bob", executor)
            self.assertEqual(written, [order_id])
            report = lifecycle.get_resource(conn, "report", order_id)
        self.assertEqual(report["log"], ["started"])
        self.assertEqual(report["score"], {"deficit": {"total": 1}})

    def test_run_job_batch(self):
        def executor(work):
            self.assertEqual(work["batch"], {"what": "two hosts"})
            work["reports"].extend([{"id": "h1", "host": {"which": "a"}}, {"host": {"which": "b"}}])

        with self.connect() as conn:
            store.write_record(conn, "batch", "b1", {"what": "two hosts"})
            order_id = lifecycle.create_order(conn, "alice", {"scriptName": "asp09", "batchName": "b1"})
            lifecycle.assign_order(conn, order_id, "adam", "bob")
            lifecycle.run_job(conn, order_id, "bob", executor)
            report = lifecycle.get_resource(conn, "report", order_id)
        self.assertEqual([h["id"] for h in report["hostResults"]], ["h1", "1"])

    def test_run_job_without_results(self):
        with self.connect() as conn:
            order_id = self._order(conn)
            lifecycle.assign_order(conn, order_id, "adam", "bob")
            with self.assertRaises(RuntimeError):
                lifecycle.run_job(conn, order_id, "bob", lambda work: None)
            self.assertTrue(store.exists(conn, "job", order_id))


class TestReports(StoreTestCase):
    def test_report_checks(self):
        with self.connect() as conn:
            with self.assertRaises(MissingTester):
                lifecycle.create_report(conn, "bob", {"id": "r1"})
            with self.assertRaises(TesterMismatch):
                lifecycle.create_report(conn, "bob", {"id": "r1", "tester": "carol"})
            with self.assertRaises(MissingId):
                lifecycle.create_report(conn, "bob", {"tester": "bob"})
            with self.assertRaises(InvalidId):
                lifecycle.create_report(conn, "bob", {"tester": "bob", "id": "R1"})
            lifecycle.create_report(conn, "bob", {"tester": "bob", "id": "r1"})
            with self.assertRaises(DuplicateId):
                lifecycle.create_report(conn, "bob", {"tester": "bob", "id": "r1"})

    def test_replace_invalidates_digests(self):
        with self.connect() as conn:
            lifecycle.create_report(conn, "bob", {"tester": "bob", "id": "r1", "v": 1})
            store.write_text(conn, "digest", "r1", "<p>1</p>")
            store.write_text(conn, "digest", "r1-h", "<p>h</p>")
            store.write_text(conn, "digest", "r10", "<p>other</p>")
            with self.assertRaises(TesterMismatch):
                lifecycle.create_report(conn, "carol", {"tester": "carol", "id": "r1"}, replace=True)
            lifecycle.create_report(conn, "bob", {"tester": "bob", "id": "r1", "v": 2}, replace=True)
            self.assertEqual(lifecycle.get_resource(conn, "report", "r1")["v"], 2)
            self.assertEqual(store.list_keys(conn, "digest"), ["r10"])

    def test_remove_report_removes_digests(self):
        with self.connect() as conn:
            lifecycle.create_report(conn, "bob", {"tester": "bob", "id": "r2"})
            store.write_text(conn, "digest", "r2-x", "<p></p>")
            lifecycle.remove_resource(conn, "report", "r2")
            self.assertEqual(store.list_keys(conn, "digest"), [])

    def test_jobs_and_digests_are_not_created_directly(self):
        with self.connect() as conn:
            for kind in ("job", "digest"):
                with self.assertRaises(MalformedBody):
                    lifecycle.create_resource(conn, kind, {}, caller="admin")


class TestStaleDigests(StoreTestCase):
    def test_new_report_clears_old_digests(self):
        with self.connect() as conn:
            store.write_text(conn, "digest", "r1", "<p>old</p>")
            store.write_text(conn, "digest", "r1-h", "<p>old</p>")
            lifecycle.create_report(conn, "bob", {"tester": "bob", "id": "r1"})
            self.assertEqual(store.list_keys(conn, "digest"), [])

    def test_completed_job_clears_old_digests(self):
        with self.connect() as conn:
            store.write_text(conn, "digest", "r9", "<p>old</p>")
            order_id = lifecycle.create_order(conn, "alice", {"scriptName": "asp09"})
            lifecycle.assign_order(conn, order_id, "adam", "bob")
            lifecycle.complete_job(conn, order_id, "bob", [{"id": "r9"}])
            self.assertEqual(store.list_keys(conn, "digest"), [])


class TestNoticeFailures(StoreTestCase):
    def test_unreadable_creator_does_not_fail_completion(self):
        notifier = Notifier(SmtpSettings(), self.data_dir / "outbox")
        with self.connect() as conn:
            order_id = lifecycle.create_order(conn, "alice", {"scriptName": "asp09"})
            lifecycle.assign_order(conn, order_id, "adam", "bob")
            (conn.dir_for("user") / "alice.json").write_text("{not json", encoding="utf-8")
            with self.assertLogs("aorta_server.lifecycle", level="ERROR") as logs:
                written = lifecycle.complete_job(conn, order_id, "bob", [{"id": "r7"}], notifier=notifier)
            self.assertEqual(written, ["r7"])
            self.assertTrue(store.exists(conn, "report", "r7"))
            self.assertFalse(store.exists(conn, "job", order_id))
        self.assertIn("could not announce report r7", logs.output[0])

    def test_failing_notifier_does_not_fail_report(self):
        class Broken:
            def notify_report(self, conn, report):
                raise OSError("down")

        with self.connect() as conn:
            with self.assertLogs("aorta_server.lifecycle", level="ERROR"):
                lifecycle.create_report(conn, "bob", {"tester": "bob", "id": "r8"}, notifier=Broken())
            self.assertTrue(store.exists(conn, "report", "r8"))
