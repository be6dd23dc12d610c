"""
File management service for vidorch.

Handles per-task scratch storage with path traversal protection.
Creates per-task directories with subdirectories for downloaded clips,
audio and the compiled output.
"""
from pathlib import Path

from vidorch.config import settings


class FileManager:
    """
    Manage filesystem artifacts for orchestration tasks.

    Creates structured directories:
    - {base_dir}/{task_id}/clips/ - Downloaded scene clips
    - {base_dir}/{task_id}/audio/ - Downloaded song audio
    - {base_dir}/{task_id}/output/ - Compiled music video
    """

    def __init__(self, base_dir: str | Path | None = None):
        if base_dir is None:
            base_dir = settings.storage.tmp_dir

        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def get_task_dir(self, task_id: str) -> Path:
        """
        Get or create the task directory with its subdirectories.

        Raises:
            ValueError: If task_id resolves outside base_dir
        """
        task_dir = (self.base_dir / str(task_id)).resolve()

        if not task_dir.is_relative_to(self.base_dir) or task_dir == self.base_dir:
            raise ValueError("Invalid task path")

        task_dir.mkdir(exist_ok=True)
        (task_dir / "clips").mkdir(exist_ok=True)
        (task_dir / "audio").mkdir(exist_ok=True)
        (task_dir / "output").mkdir(exist_ok=True)

        return task_dir

    def clip_path(self, task_id: str, scene_idx: int) -> Path:
        return self.get_task_dir(task_id) / "clips" / f"scene_{scene_idx}.mp4"

    def audio_path(self, task_id: str, suffix: str = ".mp3") -> Path:
        return self.get_task_dir(task_id) / "audio" / f"song{suffix}"

    def get_output_path(self, task_id: str, filename: str = "final.mp4") -> Path:
        return self.get_task_dir(task_id) / "output" / filename

    def find_output(self, task_id: str, filename: str = "final.mp4") -> Path | None:
        """Return the compiled output for a task if it exists, without creating directories."""
        path = (self.base_dir / str(task_id) / "output" / filename).resolve()
        if not path.is_relative_to(self.base_dir) or not path.is_file():
            return None
        return path
