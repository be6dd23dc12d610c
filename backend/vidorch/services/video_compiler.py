"""Music video compilation with ffmpeg.

Downloads the scene clips and the song, concatenates the clips in scene
order with the concat filter (video only, clips are re-encoded so mixed
codecs and resolutions work) and lays the song over the result as AAC.
The output is cut to the shorter of the two streams.
"""

import asyncio
import logging
import subprocess
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import httpx

from vidorch.schemas.generation import GeneratedClip, SongResult
from vidorch.services.file_manager import FileManager

logger = logging.getLogger(__name__)


class VideoCompiler:
    def __init__(self, file_manager: Optional[FileManager] = None, download_timeout: float = 120.0):
        self.file_manager = file_manager or FileManager()
        self.download_timeout = download_timeout

    async def compile(self, task_id: str, clips: list[GeneratedClip], song: SongResult) -> Path:
        """Build the final music video for a task and return its local path.

        Raises:
            ValueError: If there are no clips.
            subprocess.CalledProcessError: If ffmpeg fails.
        """
        if not clips:
            raise ValueError("No video clips to compile")
        ordered = sorted(clips, key=lambda clip: clip.scene_index)

        async with httpx.AsyncClient(
            follow_redirects=True, timeout=httpx.Timeout(self.download_timeout, connect=30.0)
        ) as client:
            clip_paths = await asyncio.gather(*(
                self._fetch(client, clip.url, self.file_manager.clip_path(task_id, clip.scene_index))
                for clip in ordered
            ))
            audio_path = None
            if song.song_url:
                suffix = Path(urlparse(song.song_url).path).suffix or ".mp3"
                audio_path = await self._fetch(
                    client, song.song_url, self.file_manager.audio_path(task_id, suffix)
                )

        merged_path = self.file_manager.get_output_path(task_id, "merged.mp4")
        output_path = self.file_manager.get_output_path(task_id, "final.mp4")
        logger.info(f"Task {task_id}: merging {len(clip_paths)} clips")

        try:
            await asyncio.to_thread(_concat_clips, list(clip_paths), merged_path)
            if audio_path is not None:
                await asyncio.to_thread(_add_audio, merged_path, audio_path, output_path)
            else:
                logger.warning(f"Task {task_id}: song has no audio URL, compiling without audio")
                merged_path.replace(output_path)
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode() if e.stderr else "No error output"
            logger.error(f"Task {task_id}: ffmpeg error: {stderr}")
            raise
        finally:
            if merged_path.exists():
                merged_path.unlink()

        logger.info(f"Task {task_id}: compilation complete -> {output_path}")
        return output_path

    async def _fetch(self, client: httpx.AsyncClient, url: str, dest: Path) -> Path:
        """Download `url` to `dest`; local paths and file:// URIs are used in place."""
        parsed = urlparse(url)
        if parsed.scheme in ("", "file"):
            return Path(parsed.path)

        async with client.stream("GET", url) as response:
            response.raise_for_status()
            with open(dest, "wb") as f:
                async for chunk in response.aiter_bytes():
                    f.write(chunk)
        logger.debug(f"Downloaded {url} -> {dest}")
        return dest


def _concat_clips(clip_paths: list[Path], output_path: Path) -> None:
    """Concatenate clips with the concat filter, dropping their audio."""
    inputs = []
    for clip_path in clip_paths:
        inputs.extend(["-i", str(clip_path)])

    # normalise size and frame rate so concat accepts mixed clips
    filter_parts = [
        f"[{i}:v]scale=1280:720:force_original_aspect_ratio=decrease,"
        f"pad=1280:720:(ow-iw)/2:(oh-ih)/2,setsar=1,fps=24[v{i}]"
        for i in range(len(clip_paths))
    ]
    concat_inputs = "".join(f"[v{i}]" for i in range(len(clip_paths)))
    filter_parts.append(f"{concat_inputs}concat=n={len(clip_paths)}:v=1:a=0[outv]")

    subprocess.run(
        [
            "ffmpeg",
            "-y",
            *inputs,
            "-filter_complex",
            ";".join(filter_parts),
            "-map",
            "[outv]",
            "-c:v",
            "libx264",
            "-pix_fmt",
            "yuv420p",
            str(output_path),
        ],
        check=True,
        capture_output=True,
    )


def _add_audio(video_path: Path, audio_path: Path, output_path: Path) -> None:
    """Overlay an audio track on a video, copying the video stream."""
    subprocess.run(
        [
            "ffmpeg",
            "-y",
            "-i",
            str(video_path),
            "-i",
            str(audio_path),
            "-map",
            "0:v:0",
            "-map",
            "1:a:0",
            "-c:v",
            "copy",
            "-c:a",
            "aac",
            "-shortest",
            str(output_path),
        ],
        check=True,
        capture_output=True,
    )
