"""
Unit tests for bench_gate.harness.

Test cases:
- locate_harness: present / missing / not executable
- run_harness: output captured in order, echoed, written to the log artifact
- run_harness: exit code returned (not raised) for a non-zero exit
- run_harness: process that cannot start raises HarnessExecutionError
- ComparisonStore: publish / reset / is_empty

Harnesses are small Python scripts written to a temp directory; POSIX only.
"""

import io
import os
import stat
import sys
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from bench_gate.harness import (
    ComparisonStore,
    ComparisonStoreError,
    HarnessExecutionError,
    Variant,
    VariantSpec,
    locate_harness,
    run_harness,
)


HARNESS = Path("target/release/deps/time_bench")


def _write_script(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!{sys.executable}\n{body}")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


# =============================================================================
# Tests: locate_harness
# =============================================================================

@unittest.skipUnless(os.name == "posix", "requires POSIX executables")
class TestLocateHarness(unittest.TestCase):
    """Test harness executable discovery."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.workdir = Path(self._tmp.name)
        self.spec = VariantSpec(Variant.BASELINE, self.workdir, HARNESS, ["--bench"])

    def tearDown(self):
        self._tmp.cleanup()

    def test_present(self):
        _write_script(self.workdir / HARNESS, "pass\n")
        self.assertEqual(locate_harness(self.spec), self.workdir / HARNESS)

    def test_missing(self):
        with self.assertRaises(HarnessExecutionError) as ctx:
            locate_harness(self.spec)
        self.assertIn("harness not found", str(ctx.exception))
        self.assertIs(ctx.exception.variant, Variant.BASELINE)
        self.assertIsNone(ctx.exception.returncode)

    def test_not_executable(self):
        path = self.workdir / HARNESS
        path.parent.mkdir(parents=True)
        path.write_text("not a program")
        path.chmod(0o644)
        with self.assertRaises(HarnessExecutionError) as ctx:
            locate_harness(self.spec)
        self.assertIn("not executable", str(ctx.exception))


# =============================================================================
# Tests: run_harness
# =============================================================================

@unittest.skipUnless(os.name == "posix", "requires POSIX executables")
class TestRunHarness(unittest.TestCase):
    """Test blocking harness execution and output capture."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.workdir = Path(self._tmp.name)
        self.spec = VariantSpec(Variant.CANDIDATE, self.workdir, HARNESS, ["--bench"])

    def tearDown(self):
        self._tmp.cleanup()

    def test_captures_output_and_log(self):
        _write_script(
            self.workdir / HARNESS,
            "import sys\n"
            "print('args=' + ' '.join(sys.argv[1:]), flush=True)\n"
            "print('\\x1b[1;31mPerformance has regressed.\\x1b[0m', flush=True)\n"
            "sys.stderr.write('warning on stderr\\n')\n",
        )
        log_path = self.workdir / "out" / "bench_log_1.txt"
        echoed = io.StringIO()

        with redirect_stdout(echoed):
            run = run_harness(self.spec, log_path=log_path, raise_stack_limit=False)

        self.assertEqual(run.exit_code, 0)
        self.assertIs(run.variant, Variant.CANDIDATE)
        self.assertEqual(run.lines[0], "args=--bench")
        self.assertEqual(run.lines[1], "\x1b[1;31mPerformance has regressed.\x1b[0m")
        self.assertIn("warning on stderr", run.lines)
        self.assertEqual(run.log_path, log_path)
        self.assertEqual(log_path.read_text(encoding="utf-8").splitlines(), list(run.lines))
        self.assertIn("args=--bench", echoed.getvalue())
        self.assertGreaterEqual(run.duration_sec, 0.0)

    def test_runs_in_variant_workdir(self):
        _write_script(self.workdir / HARNESS, "import os\nprint(os.getcwd())\n")
        with redirect_stdout(io.StringIO()):
            run = run_harness(self.spec, raise_stack_limit=False)
        self.assertEqual(Path(run.lines[0]).resolve(), self.workdir.resolve())
        self.assertIsNone(run.log_path)

    def test_no_echo(self):
        _write_script(self.workdir / HARNESS, "print('quiet please')\n")
        echoed = io.StringIO()
        with redirect_stdout(echoed):
            run = run_harness(self.spec, echo=False, raise_stack_limit=False)
        self.assertEqual(echoed.getvalue(), "")
        self.assertEqual(run.lines, ("quiet please",))

    def test_nonzero_exit_returned(self):
        _write_script(self.workdir / HARNESS, "import sys\nprint('boom')\nsys.exit(101)\n")
        with redirect_stdout(io.StringIO()):
            run = run_harness(self.spec, raise_stack_limit=False)
        self.assertEqual(run.exit_code, 101)
        self.assertEqual(run.lines, ("boom",))

    def test_stack_limit_raised_in_child(self):
        _write_script(
            self.workdir / HARNESS,
            "import resource\n"
            "soft, hard = resource.getrlimit(resource.RLIMIT_STACK)\n"
            "print(soft == hard)\n",
        )
        with redirect_stdout(io.StringIO()):
            run = run_harness(self.spec, raise_stack_limit=True)
        self.assertEqual(run.exit_code, 0)
        self.assertEqual(run.lines, ("True",))

    def test_unwritable_log_raises(self):
        _write_script(self.workdir / HARNESS, "print('never seen')\n")
        (self.workdir / "out").write_text("")
        with self.assertRaises(HarnessExecutionError) as ctx:
            run_harness(
                self.spec,
                log_path=self.workdir / "out" / "bench_log_1.txt",
                raise_stack_limit=False,
                pass_number=1,
            )
        self.assertEqual(ctx.exception.pass_number, 1)
        self.assertIn("Cannot open log", str(ctx.exception))

    def test_cannot_start_raises(self):
        path = self.workdir / HARNESS
        path.parent.mkdir(parents=True)
        path.write_text("not a program")
        path.chmod(0o644)
        with self.assertRaises(HarnessExecutionError) as ctx:
            run_harness(self.spec, raise_stack_limit=False, pass_number=2)
        self.assertEqual(ctx.exception.pass_number, 2)
        self.assertIsNone(ctx.exception.returncode)


# =============================================================================
# Tests: ComparisonStore
# =============================================================================

class TestComparisonStore(unittest.TestCase):
    """Test the comparison data handle."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.store = ComparisonStore(
            baseline_dir=root / "trunk" / "target" / "criterion",
            candidate_dir=root / "branch" / "target" / "criterion",
        )

    def tearDown(self):
        self._tmp.cleanup()

    def _write_baseline(self, name: str, content: str) -> None:
        path = self.store.baseline_dir / name / "new" / "estimates.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)

    def test_empty_when_nothing_on_disk(self):
        self.assertTrue(self.store.is_empty())

    def test_empty_directories_count_as_empty(self):
        self.store.baseline_dir.mkdir(parents=True)
        self.assertTrue(self.store.is_empty())

    def test_publish_copies_baseline(self):
        self._write_baseline("fib", '{"mean": 1}')
        self.store.publish()
        copied = self.store.candidate_dir / "fib" / "new" / "estimates.json"
        self.assertEqual(copied.read_text(), '{"mean": 1}')
        self.assertFalse(self.store.is_empty())

    def test_publish_overwrites_existing_candidate_data(self):
        self._write_baseline("fib", '{"mean": 2}')
        stale = self.store.candidate_dir / "fib" / "new" / "estimates.json"
        stale.parent.mkdir(parents=True)
        stale.write_text('{"mean": 1}')
        self.store.publish()
        self.assertEqual(stale.read_text(), '{"mean": 2}')

    def test_publish_without_baseline_data_raises(self):
        with self.assertRaises(ComparisonStoreError) as ctx:
            self.store.publish()
        self.assertIsInstance(ctx.exception, HarnessExecutionError)
        self.assertIs(ctx.exception.variant, Variant.BASELINE)

    def test_publish_onto_itself_raises(self):
        self._write_baseline("fib", "{}")
        store = ComparisonStore(self.store.baseline_dir, self.store.baseline_dir)
        with self.assertRaises(ComparisonStoreError):
            store.publish()

    def test_publish_copy_failure_raises(self):
        """A filesystem error while copying is a store error, not a crash."""
        self._write_baseline("fib", "{}")
        blocker = self.store.candidate_dir.parent
        blocker.parent.mkdir(parents=True)
        blocker.write_text("a file where a directory belongs")
        with self.assertRaises(ComparisonStoreError) as ctx:
            self.store.publish()
        self.assertIs(ctx.exception.variant, Variant.CANDIDATE)

    def test_reset_removes_both(self):
        self._write_baseline("fib", "{}")
        self.store.publish()
        self.store.reset()
        self.assertFalse(self.store.baseline_dir.exists())
        self.assertFalse(self.store.candidate_dir.exists())
        self.assertTrue(self.store.is_empty())

    def test_reset_when_already_empty(self):
        self.store.reset()
        self.assertTrue(self.store.is_empty())

    def test_for_variants(self):
        base = VariantSpec(Variant.BASELINE, Path("t"), HARNESS, data_subdir=Path("target/criterion"))
        cand = VariantSpec(Variant.CANDIDATE, Path("b"), HARNESS, data_subdir=Path("target/criterion"))
        store = ComparisonStore.for_variants(base, cand)
        self.assertEqual(store.baseline_dir, Path("t/target/criterion"))
        self.assertEqual(store.candidate_dir, Path("b/target/criterion"))


if __name__ == "__main__":
    unittest.main()
