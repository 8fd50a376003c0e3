import signal
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from ethnet.contracts.v1 import ProcessRecord
from ethnet.errors import RunInterruptedError, SetupStepError
from ethnet.runners.process import (
    ProcessTable,
    capture,
    launch,
    run_step,
    terminate_by_name,
    terminate_record,
)


class TestLaunch(unittest.TestCase):
    def test_stdout_and_stderr_go_to_sink(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            sink = Path(td) / "logs" / "node-0" / "geth.log"
            h = launch(
                "py",
                [sys.executable, "-c", "import sys; print('hello'); sys.stderr.write('oops\\n')"],
                sink,
                node=0,
            )
            self.assertEqual(h.popen.wait(timeout=20), 0)
            text = sink.read_text(encoding="utf-8")
        self.assertIn("hello", text)
        self.assertIn("oops", text)
        self.assertEqual(h.node, 0)

    def test_no_sink_discards_output(self) -> None:
        h = launch("py", [sys.executable, "-c", "print('x')"], None)
        self.assertEqual(h.popen.wait(timeout=20), 0)
        self.assertTrue(h.record().sink.endswith("null"))

    def test_missing_program(self) -> None:
        with self.assertRaises(SetupStepError):
            launch("nope", ["/nonexistent/ethnet-binary"], None)

    def test_terminate_all_signals_running_processes(self) -> None:
        table = ProcessTable()
        h = table.spawn("sleeper", lambda: launch("sleeper", [sys.executable, "-c", "import time; time.sleep(60)"], None))
        self.assertTrue(h.alive())
        self.assertEqual(table.terminate_all(), 1)
        self.assertEqual(h.popen.wait(timeout=20), -signal.SIGTERM)
        self.assertEqual(table.terminate_all(), 0)
        self.assertEqual([x.name for x in table.handles()], ["sleeper"])

    def test_closed_table_refuses_to_start(self) -> None:
        table = ProcessTable()
        table.close()
        started = []
        with self.assertRaises(RunInterruptedError):
            table.spawn("geth", lambda: started.append("geth"))
        self.assertEqual(started, [])
        self.assertEqual(table.handles(), [])
        self.assertTrue(table.closed)

    def test_record_keeps_program_name(self) -> None:
        h = launch("py", [sys.executable, "-c", "pass"], None)
        h.popen.wait(timeout=20)
        self.assertEqual(h.record().exe, Path(sys.executable).name)


class TestRunStep(unittest.TestCase):
    def test_success_appends_to_log(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            log = Path(td) / "setup.log"
            run_step("first", [sys.executable, "-c", "print('one')"], log)
            run_step("second", [sys.executable, "-c", "print('two')"], log)
            self.assertEqual(log.read_text(encoding="utf-8").split(), ["one", "two"])

    def test_failure_raises_with_log_tail(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            log = Path(td) / "setup.log"
            with self.assertRaises(SetupStepError) as cm:
                run_step("geth init", [sys.executable, "-c", "import sys; print('boom'); sys.exit(3)"], log)
        err = cm.exception
        self.assertIn("code 3", err.message)
        self.assertIn("boom", err.details["tail"])
        self.assertEqual(err.code, "setup_step_failed")

    def test_timeout_raises(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            log = Path(td) / "setup.log"
            with self.assertRaises(SetupStepError) as cm:
                run_step("geth init", [sys.executable, "-c", "import time; time.sleep(30)"], log, timeout_s=0.5)
        self.assertIn("geth init failed", cm.exception.message)

    def test_capture(self) -> None:
        self.assertEqual(capture([sys.executable, "-c", "print('abc')"]).strip(), "abc")
        with self.assertRaises(SetupStepError):
            capture([sys.executable, "-c", "import sys; sys.exit(1)"])


class TestTerminateByName(unittest.TestCase):
    def test_found_and_not_found(self) -> None:
        with patch("ethnet.runners.process.subprocess.run", return_value=MagicMock(returncode=0)) as run:
            self.assertTrue(terminate_by_name("geth"))
        self.assertEqual(run.call_args[0][0], ["pkill", f"-{int(signal.SIGTERM)}", "geth"])
        with patch("ethnet.runners.process.subprocess.run", return_value=MagicMock(returncode=1)):
            self.assertFalse(terminate_by_name("geth"))

    def test_never_raises(self) -> None:
        with patch("ethnet.runners.process.subprocess.run", side_effect=OSError("no pkill")):
            self.assertFalse(terminate_by_name("validator"))
        with patch("ethnet.runners.process.subprocess.run", side_effect=subprocess.TimeoutExpired("pkill", 5)):
            self.assertFalse(terminate_by_name("validator"))
        self.assertFalse(terminate_by_name("  "))


class TestTerminateRecord(unittest.TestCase):
    def test_own_child_is_signalled(self) -> None:
        h = launch("sleeper", [sys.executable, "-c", "import time; time.sleep(60)"], None)
        self.addCleanup(h.popen.wait, 20)
        with patch("ethnet.runners.process.process_name", return_value=h.record().exe[:15]):
            self.assertTrue(terminate_record(h.record()))
        self.assertEqual(h.popen.wait(timeout=20), -signal.SIGTERM)

    def test_reused_pid_is_left_alone(self) -> None:
        # same session as the test runner, so not a process group leader
        other = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
        self.addCleanup(other.wait, 20)
        self.addCleanup(other.kill)
        rec = ProcessRecord(name="geth", pid=other.pid, exe="geth")
        self.assertFalse(terminate_record(rec))
        # even when the name matches, a pid that is not a group leader is not signalled
        with patch("ethnet.runners.process.process_name", return_value="geth"):
            self.assertFalse(terminate_record(rec))
        self.assertIsNone(other.poll())

    def test_gone_process(self) -> None:
        with patch("ethnet.runners.process.process_name", return_value=""):
            self.assertFalse(terminate_record(ProcessRecord(name="geth", pid=999999)))


if __name__ == "__main__":
    unittest.main()
