# duration_manager.py - audio duration detection via ffprobe

import asyncio
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Optional

import aiofiles

logger = logging.getLogger(__name__)


class DurationManager:
    """
    Reads duration from audio metadata with ffprobe.

    Detection is advisory: a missing binary, a probe error or an unreadable
    file all yield None, never an exception.
    """

    def __init__(self, ffprobe_path: Optional[str] = None, timeout: float = 20.0):
        self.ffprobe_path = ffprobe_path or shutil.which("ffprobe")
        self.timeout = timeout
        if not self.ffprobe_path:
            logger.warning("ffprobe not found on PATH; duration detection disabled")

    @property
    def available(self) -> bool:
        return bool(self.ffprobe_path)

    async def probe_file(self, file_path: Path) -> Optional[Dict]:
        """Format-level metadata for a file, or None"""
        if not self.available:
            return None

        cmd = [
            self.ffprobe_path,
            '-v', 'error',
            '-show_entries', 'format=duration,bit_rate,format_name',
            '-of', 'json',
            str(file_path),
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning(f"ffprobe could not run on {file_path}: {e}")
            return None

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"ffprobe timed out after {self.timeout}s on {file_path}")
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            return None

        if process.returncode != 0:
            logger.warning(f"ffprobe failed: {stderr.decode(errors='replace').strip()}")
            return None

        try:
            return json.loads(stdout.decode()).get('format', {})
        except ValueError as e:
            logger.warning(f"ffprobe returned unreadable output: {e}")
            return None

    async def detect(self, audio: bytes, suffix: str = ".mp3") -> Optional[float]:
        """Duration in seconds of an in-memory audio blob, or None"""
        if not audio or not self.available:
            return None

        fd, tmp_name = tempfile.mkstemp(suffix=suffix)
        os.close(fd)
        tmp_path = Path(tmp_name)
        try:
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(audio)
            format_data = await self.probe_file(tmp_path)
        finally:
            try:
                tmp_path.unlink()
            except OSError:
                pass

        if not format_data:
            return None
        try:
            duration = float(format_data.get('duration', 0))
        except (TypeError, ValueError):
            return None
        if duration <= 0:
            return None

        logger.info(f"Detected audio duration {duration:.2f}s")
        return duration

    async def __call__(self, audio: bytes) -> Optional[float]:
        return await self.detect(audio)


__all__ = ['DurationManager']
