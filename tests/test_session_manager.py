"""
Tests for core/session.py - SessionManager lifecycle.

A FakeAdapter is registered for the duration of each test so no real
pair agent is launched.
"""

import asyncio
import json
import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from pairbridge.adapters import ADAPTERS, AdapterError, BaseAdapter, register_adapter
from pairbridge.bridge.server import BridgeState
from pairbridge.core.configs import BridgeConfig
from pairbridge.core.session import SESSION_ENV_VAR, SessionError, SessionManager


class FakeAdapter(BaseAdapter):
    backend = "fake"
    name = "Fake Pair"

    # Behavior switches set by individual tests
    fail_spawn = False
    fail_stop = False
    instances = []

    def __init__(self, socket_dir=None):
        super().__init__(socket_dir=socket_dir)
        self.session_id = None
        self.system_prompt = None
        self.running = False
        self.stopped = False
        self.socket_present_at_stop = None
        FakeAdapter.instances.append(self)

    async def spawn(self, session_id, system_prompt):
        if self.fail_spawn:
            raise AdapterError("fake spawn failure")
        self.session_id = session_id
        self.system_prompt = system_prompt
        self.running = True

    async def stop(self):
        if self.session_id:
            self.socket_present_at_stop = self.socket_path_for(self.session_id).exists()
        self.stopped = True
        self.running = False
        if self.fail_stop:
            raise AdapterError("fake stop failure")

    def is_running(self):
        return self.running

    def get_process_id(self):
        return f"fake-{self.session_id}" if self.running else None


class TestSessionManager(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.temp_dir = tempfile.mkdtemp()
        FakeAdapter.fail_spawn = False
        FakeAdapter.fail_stop = False
        FakeAdapter.instances = []
        register_adapter(FakeAdapter)

        self.env_patch = patch.dict(os.environ, {}, clear=False)
        self.env_patch.start()
        os.environ.pop(SESSION_ENV_VAR, None)

        self.config = BridgeConfig(socket_dir=Path(self.temp_dir), default_backend="fake")
        self.manager = SessionManager(self.config)

    async def asyncTearDown(self):
        if self.manager.is_session_active():
            await self.manager.stop_session()
        self.env_patch.stop()
        ADAPTERS.pop("fake", None)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    async def test_start_session(self):
        info = await self.manager.start_session(custom_prompt="be picky")

        self.assertTrue(self.manager.is_session_active())
        self.assertEqual(self.manager.session_id, info.session_id)
        self.assertEqual(len(info.session_id), 8)
        self.assertEqual(info.backend, "fake")
        self.assertEqual(info.socket_path, Path(self.temp_dir) / f"claude-pair-{info.session_id}.sock")
        self.assertTrue(info.socket_path.exists())
        self.assertEqual(os.environ[SESSION_ENV_VAR], info.session_id)

        adapter = FakeAdapter.instances[0]
        self.assertEqual(adapter.session_id, info.session_id)
        self.assertEqual(adapter.system_prompt, "be picky")

    async def test_second_start_is_rejected(self):
        await self.manager.start_session()
        first_id = self.manager.session_id

        with self.assertRaises(SessionError):
            await self.manager.start_session()
        self.assertEqual(self.manager.session_id, first_id)

    async def test_stop_without_session_is_rejected(self):
        with self.assertRaises(SessionError):
            await self.manager.stop_session()

    async def test_stop_session(self):
        info = await self.manager.start_session()
        bridge = self.manager.active.bridge
        bridge.session.append({"type": "activity", "tool": "Edit"})

        summary = await self.manager.stop_session()

        self.assertEqual(summary["session_id"], info.session_id)
        self.assertGreaterEqual(summary["duration"], 0)
        self.assertEqual(summary["status"]["activity_count"], 1)
        self.assertFalse(self.manager.is_session_active())
        self.assertIsNone(self.manager.session_id)
        self.assertEqual(bridge.lifecycle, BridgeState.STOPPED)
        self.assertFalse(info.socket_path.exists())
        self.assertTrue(FakeAdapter.instances[0].stopped)
        self.assertNotIn(SESSION_ENV_VAR, os.environ)

    async def test_adapter_stop_failure_still_stops_bridge(self):
        info = await self.manager.start_session()
        FakeAdapter.fail_stop = True

        with self.assertLogs("pairbridge.core.session", level="WARNING"):
            summary = await self.manager.stop_session()

        self.assertEqual(summary["session_id"], info.session_id)
        self.assertFalse(info.socket_path.exists())
        self.assertFalse(self.manager.is_session_active())

    async def test_spawn_failure_cleans_up_bridge(self):
        FakeAdapter.fail_spawn = True

        with self.assertRaises(AdapterError):
            await self.manager.start_session()

        self.assertFalse(self.manager.is_session_active())
        self.assertEqual(list(Path(self.temp_dir).glob("claude-pair-*.sock")), [])
        self.assertNotIn(SESSION_ENV_VAR, os.environ)

    async def test_unknown_backend(self):
        with self.assertRaises(ValueError):
            await self.manager.start_session(backend="nonexistent")
        self.assertFalse(self.manager.is_session_active())
        self.assertEqual(list(Path(self.temp_dir).glob("claude-pair-*.sock")), [])

    async def test_prompt_file_from_config(self):
        prompt_file = Path(self.temp_dir) / "prompt.md"
        prompt_file.write_text("Review everything twice.")
        manager = SessionManager(
            BridgeConfig(socket_dir=Path(self.temp_dir), default_backend="fake", prompt_path=prompt_file)
        )

        await manager.start_session()
        try:
            self.assertEqual(FakeAdapter.instances[0].system_prompt, "Review everything twice.")
        finally:
            await manager.stop_session()

    async def test_bridge_only_session(self):
        info = await self.manager.start_session(spawn_pair=False)

        self.assertIsNone(info.backend)
        self.assertEqual(FakeAdapter.instances, [])
        status = self.manager.get_session_status()
        self.assertFalse(status["pair_running"])
        self.assertIsNone(status["pair_process_id"])

    async def test_session_status(self):
        self.assertEqual(self.manager.get_session_status(), {"active": False})

        info = await self.manager.start_session()
        status = self.manager.get_session_status()

        self.assertTrue(status["active"])
        self.assertEqual(status["session_id"], info.session_id)
        self.assertEqual(status["backend"], "fake")
        self.assertEqual(status["socket_path"], str(info.socket_path))
        self.assertTrue(status["pair_running"])
        self.assertEqual(status["pair_process_id"], f"fake-{info.session_id}")
        self.assertEqual(status["status"]["session_id"], info.session_id)
        self.assertEqual(status["status"]["activity_count"], 0)

    async def test_stop_session_stops_pair_agent_before_bridge(self):
        await self.manager.start_session()
        await self.manager.stop_session()
        self.assertTrue(FakeAdapter.instances[0].socket_present_at_stop)

    async def test_socket_stop_command_goes_through_session(self):
        info = await self.manager.start_session()
        bridge = self.manager.active.bridge
        bridge.session.append({"type": "activity", "tool": "Edit"})

        reader, writer = await asyncio.open_unix_connection(str(info.socket_path))
        writer.write(b'{"command": "stop"}\n')
        await writer.drain()
        ack = json.loads(await asyncio.wait_for(reader.readline(), 5.0))
        self.assertEqual(ack, {"ok": True, "data": {"stopping": True}})
        writer.close()

        await asyncio.wait_for(bridge.serve_forever(), 5.0)
        summary = await asyncio.wait_for(self.manager.request_stop(), 5.0)

        self.assertTrue(FakeAdapter.instances[0].socket_present_at_stop)
        self.assertEqual(summary["session_id"], info.session_id)
        self.assertEqual(summary["status"]["activity_count"], 1)
        self.assertFalse(self.manager.is_session_active())
        self.assertFalse(info.socket_path.exists())

    async def test_request_stop_is_shared(self):
        await self.manager.start_session()

        first = self.manager.request_stop()
        second = self.manager.request_stop()

        self.assertIs(first, second)
        summary = await first
        self.assertIsNotNone(summary["status"])
        self.assertFalse(self.manager.is_session_active())

    async def test_status_kept_when_bridge_stopped_first(self):
        await self.manager.start_session()
        bridge = self.manager.active.bridge
        bridge.session.append({"type": "activity", "tool": "Edit"})
        bridge.session.enqueue_feedback({"severity": "low", "message": "nit"})

        await bridge.stop()
        summary = await self.manager.stop_session()

        self.assertEqual(summary["status"]["activity_count"], 1)
        self.assertEqual(summary["status"]["pending_feedback"], 1)

    async def test_new_session_after_stop(self):
        first = await self.manager.start_session()
        await self.manager.stop_session()

        second = await self.manager.start_session()
        self.assertNotEqual(first.session_id, second.session_id)


if __name__ == "__main__":
    unittest.main()
