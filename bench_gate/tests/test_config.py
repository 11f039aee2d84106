"""
Tests for gate configuration resolution.

Hermetic tests - environment passed explicitly, no harness invocation.
"""

import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from bench_gate.config import (
    ConfigError,
    DEFAULT_BRANCH_DIR,
    DEFAULT_HARNESS,
    DEFAULT_TRUNK_DIR,
    GateConfig,
    load_config,
)
from bench_gate.harness import Variant


class TestLoadConfig(unittest.TestCase):
    """Test flag > environment > default precedence."""

    def test_defaults(self):
        config = load_config(environ={})
        self.assertEqual(config.trunk_dir, DEFAULT_TRUNK_DIR)
        self.assertEqual(config.branch_dir, DEFAULT_BRANCH_DIR)
        self.assertEqual(config.harness, DEFAULT_HARNESS)
        self.assertEqual(config.harness_args, ["--bench"])
        self.assertEqual(config.data_subdir, Path("target/criterion"))
        self.assertEqual(config.marker, "regressed")
        self.assertEqual(config.lookback, 3)
        self.assertTrue(config.raise_stack_limit)

    def test_out_dir_defaults_to_branch(self):
        config = load_config(branch_dir=Path("cand"), environ={})
        self.assertEqual(config.out_dir, Path("cand"))

    def test_environment_used_when_flag_missing(self):
        env = {
            "BENCH_GATE_TRUNK_DIR": "/ci/trunk",
            "BENCH_GATE_BRANCH_DIR": "/ci/branch",
            "BENCH_GATE_HARNESS": "bin/bench",
            "BENCH_GATE_HARNESS_ARGS": "--bench --noplot",
            "BENCH_GATE_DATA_DIR": "out/criterion",
            "BENCH_GATE_OUT_DIR": "/ci/artifacts",
            "BENCH_GATE_LOOKBACK": "5",
            "BENCH_GATE_MARKER": "slower",
            "BENCH_GATE_RAISE_STACK_LIMIT": "false",
        }
        config = load_config(environ=env)
        self.assertEqual(config.trunk_dir, Path("/ci/trunk"))
        self.assertEqual(config.branch_dir, Path("/ci/branch"))
        self.assertEqual(config.harness, Path("bin/bench"))
        self.assertEqual(config.harness_args, ["--bench", "--noplot"])
        self.assertEqual(config.data_subdir, Path("out/criterion"))
        self.assertEqual(config.out_dir, Path("/ci/artifacts"))
        self.assertEqual(config.lookback, 5)
        self.assertEqual(config.marker, "slower")
        self.assertFalse(config.raise_stack_limit)

    def test_flags_override_environment(self):
        env = {
            "BENCH_GATE_TRUNK_DIR": "/ci/trunk",
            "BENCH_GATE_HARNESS_ARGS": "--bench --noplot",
            "BENCH_GATE_LOOKBACK": "5",
        }
        config = load_config(
            trunk_dir=Path("local-trunk"),
            harness_args=["--bench"],
            lookback=2,
            environ=env,
        )
        self.assertEqual(config.trunk_dir, Path("local-trunk"))
        self.assertEqual(config.harness_args, ["--bench"])
        self.assertEqual(config.lookback, 2)

    def test_empty_harness_args_env_means_no_args(self):
        config = load_config(environ={"BENCH_GATE_HARNESS_ARGS": ""})
        self.assertEqual(config.harness_args, [])

    def test_bad_lookback_env_raises(self):
        with self.assertRaises(ConfigError) as ctx:
            load_config(environ={"BENCH_GATE_LOOKBACK": "three"})
        self.assertIn("BENCH_GATE_LOOKBACK", str(ctx.exception))
        self.assertTrue(ctx.exception.__suppress_context__)
        self.assertIsNone(ctx.exception.__cause__)


class TestGateConfig(unittest.TestCase):
    """Test validation and variant specs."""

    def test_variant_specs(self):
        config = GateConfig(trunk_dir=Path("t"), branch_dir=Path("b"))
        baseline = config.baseline_spec()
        candidate = config.candidate_spec()
        self.assertIs(baseline.variant, Variant.BASELINE)
        self.assertIs(candidate.variant, Variant.CANDIDATE)
        self.assertEqual(baseline.harness_path, Path("t/target/release/deps/time_bench"))
        self.assertEqual(candidate.data_dir, Path("b/target/criterion"))
        self.assertEqual(candidate.args, ["--bench"])

    def test_validate_ok(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "t").mkdir()
            (root / "b").mkdir()
            GateConfig(trunk_dir=root / "t", branch_dir=root / "b").validate()

    def test_validate_reports_every_problem(self):
        config = GateConfig(
            trunk_dir=Path("/nonexistent/trunk"),
            branch_dir=Path("/nonexistent/branch"),
            lookback=0,
            marker="",
        )
        with self.assertRaises(ConfigError) as ctx:
            config.validate()
        message = str(ctx.exception)
        self.assertIn("trunk directory does not exist", message)
        self.assertIn("branch directory does not exist", message)
        self.assertIn("lookback must be at least 1", message)
        self.assertIn("marker must not be empty", message)

    def test_absolute_data_dir_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "t").mkdir()
            (root / "b").mkdir()
            config = GateConfig(
                trunk_dir=root / "t",
                branch_dir=root / "b",
                data_subdir=Path("/abs/criterion"),
            )
            with self.assertRaises(ConfigError) as ctx:
                config.validate()
            self.assertIn("relative to each checkout", str(ctx.exception))

    def test_same_trunk_and_branch_rejected(self):
        """One checkout for both variants would compare data against itself."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            config = GateConfig(trunk_dir=root, branch_dir=root / ".")
            with self.assertRaises(ConfigError) as ctx:
                config.validate()
            self.assertIn("must be different directories", str(ctx.exception))

    def test_out_dir_that_is_a_file_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "t").mkdir()
            (root / "b").mkdir()
            (root / "notadir").write_text("")
            config = GateConfig(trunk_dir=root / "t", branch_dir=root / "b", out_dir=root / "notadir")
            with self.assertRaises(ConfigError) as ctx:
                config.validate()
            self.assertIn("not a directory", str(ctx.exception))

    def test_to_dict_serializable(self):
        data = GateConfig().to_dict()
        self.assertEqual(data["harness_args"], ["--bench"])
        self.assertEqual(data["out_dir"], "bench-folder-branch")


if __name__ == "__main__":
    unittest.main()
