"""Tests for wire schemas, settings and small services."""

import pytest

from vidorch.config import Settings
from vidorch.schemas.a2a import Artifact, DataPart, Message, Task, TextPart
from vidorch.schemas.generation import (
    Character,
    GeneratedImage,
    ImageSet,
    Scene,
    SongResult,
)
from vidorch.services.file_manager import FileManager
from vidorch.services.llm import get_adapter
from vidorch.services.llm.base import strip_code_fences
from vidorch.services.llm.ollama_adapter import OllamaAdapter
from vidorch.services.llm.vertex_adapter import VertexAIAdapter, location_for_model


def test_task_wire_form_is_camel_case():
    task = Task(id="t1", context_id="c1")
    wire = task.to_wire()

    assert wire["contextId"] == "c1"
    assert wire["status"]["state"] == "submitted"
    assert wire["metadata"]["currentStep"] == "GENERATE_SONG"
    assert wire["kind"] == "task"


def test_session_id_is_read_as_context_id():
    assert Task.model_validate({"id": "t1", "sessionId": "s1"}).context_id == "s1"


def test_legacy_part_type_is_accepted():
    message = Message.model_validate({
        "role": "agent",
        "parts": [{"type": "text", "text": "hello"}, {"type": "data", "data": {"a": 1}}],
    })
    assert isinstance(message.parts[0], TextPart)
    assert isinstance(message.parts[1], DataPart)
    assert message.text == "hello"


def test_artifact_data_merges_data_parts():
    artifact = Artifact(
        name="song",
        parts=[TextPart(text="x"), DataPart(data={"a": 1}), DataPart(data={"b": 2})],
        metadata={"step": "GENERATE_SONG"},
    )
    assert artifact.data() == {"a": 1, "b": 2}
    assert artifact.step == "GENERATE_SONG"


def test_llm_list_values_are_coerced():
    song = SongResult.model_validate({"title": ["Neon", "Minds"], "lyrics": None})
    assert song.title == "Neon, Minds"
    assert song.lyrics == ""
    assert Character.model_validate({"name": ["Nova"]}).name == "Nova"


def test_scene_images_put_setting_first():
    images = ImageSet(images=[
        GeneratedImage(subject_type="character", name="Nova", url="n.png"),
        GeneratedImage(subject_type="character", name="Byte", url="b.png"),
        GeneratedImage(subject_type="setting", name="Rooftop", url="r.png"),
    ])
    scene = Scene(index=0, prompt="p", setting_name="rooftop", characters=["NOVA"])

    assert [image.url for image in images.for_scene(scene)] == ["r.png", "n.png"]


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'


def test_ollama_models_route_to_ollama():
    assert isinstance(get_adapter("ollama/llama3.1"), OllamaAdapter)


def test_gemini_models_route_to_vertex():
    adapter = get_adapter("gemini-2.5-flash")
    assert isinstance(adapter, VertexAIAdapter)
    assert location_for_model("gemini-3-pro-preview", "us-central1") == "global"
    assert location_for_model("gemini-2.5-flash", "europe-west4") == "europe-west4"


def test_env_overrides_nested_settings(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("VIDORCH_QUEUE__MAX_CONCURRENT", "5")
    monkeypatch.setenv("VIDORCH_ENGINE__UNKNOWN_ACTION_POLICY", "fail")

    settings = Settings()

    assert settings.queue.max_concurrent == 5
    assert settings.engine.unknown_action_policy == "fail"
    assert settings.queue.max_retries == 3


def test_yaml_config_is_loaded(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "config.yaml").write_text(
        "agents:\n  song_url: http://songs.internal:9000\nstorage:\n  tmp_dir: scratch\n"
    )

    settings = Settings()

    assert settings.agents.song_url == "http://songs.internal:9000"
    assert str(settings.storage.tmp_dir) == "scratch"


def test_file_manager_rejects_escaping_task_ids(tmp_path):
    manager = FileManager(tmp_path)
    assert manager.clip_path("task-1", 2).name == "scene_2.mp4"
    assert manager.find_output("task-1") is None
    with pytest.raises(ValueError):
        manager.get_task_dir("../outside")
