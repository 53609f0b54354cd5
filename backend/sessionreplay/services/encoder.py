"""ffmpeg-backed encoding of captured replay frames."""
import asyncio
from pathlib import Path
from typing import List, Protocol

from sessionreplay.config import Settings
from sessionreplay.utils.exceptions import EncodeFailed
from sessionreplay.utils.logger import logger


class VideoEncoder(Protocol):
    async def encode(self, source: Path, output: Path) -> Path:
        ...

    async def extract_frame(self, video: Path, frame_index: int, output: Path) -> Path:
        ...


class FfmpegEncoder:
    """Runs ffmpeg as a subprocess."""

    def __init__(self, settings: Settings):
        self.ffmpeg_path = settings.ffmpeg_path
        self.thumbnail_width = settings.thumbnail_width

    async def encode(self, source: Path, output: Path) -> Path:
        """
        Encode a captured recording to streaming-friendly H.264 MP4.

        Args:
            source: Captured video (WebM from the browser)
            output: Destination file; may carry a temporary suffix

        Returns:
            The output path

        Raises:
            EncodeFailed: ffmpeg is missing, failed, or wrote nothing
        """
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-i", str(source),
            "-c:v", "libx264",
            "-preset", "fast",
            "-crf", "22",
            "-pix_fmt", "yuv420p",
            "-movflags", "+faststart",
            "-an",
            "-f", "mp4",
            str(output),
        ]
        await self._run(cmd, output)
        return output

    async def extract_frame(self, video: Path, frame_index: int, output: Path) -> Path:
        """Write frame ``frame_index`` of ``video`` to ``output`` as PNG."""
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-i", str(video),
            "-vf", f"select=eq(n\\,{frame_index}),scale={self.thumbnail_width}:-2",
            "-vframes", "1",
            "-f", "image2",
            "-c:v", "png",
            str(output),
        ]
        await self._run(cmd, output)
        return output

    async def _run(self, cmd: List[str], output: Path) -> None:
        logger.debug(f"[ENCODER] Running: {' '.join(cmd)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncodeFailed(f"Could not start ffmpeg ({self.ffmpeg_path}): {e}") from e

        _, stderr = await process.communicate()
        if process.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace")[-500:]
            raise EncodeFailed(f"ffmpeg exited with {process.returncode}: {tail}")

        if not output.exists() or output.stat().st_size == 0:
            raise EncodeFailed(f"ffmpeg wrote no output to {output.name}")
