"""
Tests for adapters/ and prompts/ - backend registry, adapters, pair prompt.
"""

import shlex
import shutil
import sys
import tempfile
import unittest
from pathlib import Path

from pairbridge.adapters import (
    ADAPTERS,
    AdapterError,
    BaseAdapter,
    ClaudeOpusAdapter,
    CodexAdapter,
    create_adapter,
    list_backends,
    register_adapter,
)
from pairbridge.core.configs import BridgeConfig
from pairbridge.prompts import DEFAULT_PAIR_PROMPT, build_pair_prompt, load_pair_prompt


class TestRegistry(unittest.TestCase):
    """create_adapter / list_backends / register_adapter."""

    def test_builtin_backends(self):
        backends = {entry["backend"]: entry["name"] for entry in list_backends()}
        self.assertEqual(backends["claude-opus"], "Claude Opus")
        self.assertEqual(backends["codex"], "Codex")

    def test_create_adapter_is_case_insensitive(self):
        self.assertIsInstance(create_adapter("Claude-Opus"), ClaudeOpusAdapter)
        self.assertIsInstance(create_adapter("CODEX"), CodexAdapter)

    def test_unknown_backend(self):
        with self.assertRaises(ValueError) as context:
            create_adapter("gemini")
        self.assertIn("Unknown backend", str(context.exception))
        self.assertIn("codex", str(context.exception))

    def test_create_adapter_applies_config(self):
        config = BridgeConfig(
            socket_dir=Path("/var/run/pair"),
            codex_command="codex --quiet",
            adapter_stop_timeout=1.0,
        )
        adapter = create_adapter("codex", config)
        self.assertEqual(adapter.command, "codex --quiet")
        self.assertEqual(adapter.stop_timeout, 1.0)
        self.assertEqual(adapter.socket_path_for("abc"), Path("/var/run/pair/claude-pair-abc.sock"))

    def test_register_requires_backend_tag(self):
        class Untagged(BaseAdapter):
            async def spawn(self, session_id, system_prompt):
                pass

            async def stop(self):
                pass

            def is_running(self):
                return False

            def get_process_id(self):
                return None

        with self.assertRaises(ValueError):
            register_adapter(Untagged)
        self.assertNotIn("", ADAPTERS)


class TestClaudeOpusAdapter(unittest.IsolatedAsyncioTestCase):

    async def test_spawn_prepares_prompt_for_session(self):
        adapter = ClaudeOpusAdapter(socket_dir="/tmp")
        self.assertFalse(adapter.is_running())
        self.assertIsNone(adapter.get_process_id())

        await adapter.spawn("abc", "Be thorough.")

        self.assertTrue(adapter.is_running())
        self.assertEqual(adapter.get_process_id(), "pair-abc")
        self.assertTrue(adapter.prompt.startswith("Be thorough."))
        self.assertIn("/tmp/claude-pair-abc.sock", adapter.prompt)
        self.assertIn("CLAUDE_SESSION_ID=abc", adapter.prompt)

    async def test_stop(self):
        adapter = ClaudeOpusAdapter()
        await adapter.spawn("abc", "x")
        await adapter.stop()
        self.assertFalse(adapter.is_running())
        self.assertIsNone(adapter.get_process_id())
        # Stopping twice is harmless
        await adapter.stop()


class TestCodexAdapter(unittest.IsolatedAsyncioTestCase):
    """Codex adapter driven with stand-in commands."""

    async def test_spawn_and_stop(self):
        command = f"{shlex.quote(sys.executable)} -c 'import time; time.sleep(30)'"
        adapter = CodexAdapter(command=command, stop_timeout=5.0)

        await adapter.spawn("abc", "Be thorough.")
        try:
            self.assertTrue(adapter.is_running())
            pid = adapter.get_process_id()
            self.assertTrue(pid.isdigit())
        finally:
            await adapter.stop()

        self.assertFalse(adapter.is_running())
        self.assertIsNone(adapter.get_process_id())

    async def test_stop_when_not_started(self):
        adapter = CodexAdapter()
        await adapter.stop()
        self.assertFalse(adapter.is_running())

    async def test_missing_executable(self):
        adapter = CodexAdapter(command="/nonexistent/bin/codex")
        with self.assertRaises(AdapterError) as context:
            await adapter.spawn("abc", "x")
        self.assertIn("Failed to start", str(context.exception))
        self.assertFalse(adapter.is_running())

    async def test_immediate_exit(self):
        false_bin = shutil.which("false")
        if false_bin is None:
            self.skipTest("'false' not available")

        adapter = CodexAdapter(command=false_bin)
        with self.assertRaises(AdapterError) as context:
            await adapter.spawn("abc", "x")
        self.assertIn("exited immediately", str(context.exception))
        self.assertIsNone(adapter.get_process_id())


class TestPairPrompt(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_default_prompt(self):
        self.assertEqual(load_pair_prompt(None), DEFAULT_PAIR_PROMPT)

    def test_prompt_from_file(self):
        path = Path(self.temp_dir) / "prompt.md"
        path.write_text("  Only flag security issues.\n")
        self.assertEqual(load_pair_prompt(path), "Only flag security issues.")

    def test_missing_or_empty_file_falls_back(self):
        missing = Path(self.temp_dir) / "missing.md"
        with self.assertLogs("pairbridge.prompts.pair_prompt", level="WARNING"):
            self.assertEqual(load_pair_prompt(missing), DEFAULT_PAIR_PROMPT)

        empty = Path(self.temp_dir) / "empty.md"
        empty.write_text("\n")
        self.assertEqual(load_pair_prompt(empty), DEFAULT_PAIR_PROMPT)

    def test_build_pair_prompt(self):
        prompt = build_pair_prompt(
            "Be thorough.",
            socket_path=Path("/tmp/claude-pair-abc.sock"),
            session_id="abc",
        )
        self.assertTrue(prompt.startswith("Be thorough."))
        self.assertIn("/tmp/claude-pair-abc.sock", prompt)
        self.assertIn("CLAUDE_SESSION_ID=abc", prompt)
        self.assertIn("pair-bridge wait", prompt)
        self.assertIn("pair-bridge emit feedback", prompt)


if __name__ == "__main__":
    unittest.main()
