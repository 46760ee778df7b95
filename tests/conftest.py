"""Shared test fixtures and a synthetic Unity-style project builder."""

import os
import shutil
import tempfile
import uuid
import wave

import numpy as np
import pytest
import yaml
from PIL import Image

from ReproKit.config import ReproConfig

_YAML_HEADER = "%YAML 1.1\n%TAG !u! tag:unity3d.com,2011:\n"


class UnityProjectBuilder:
    """Write a tiny text-serialized project with ``.meta`` GUID sidecars."""

    def __init__(self, root: str):
        self.root = root
        self.guids = {}
        for name in ("Assets", "ProjectSettings", "Packages"):
            os.makedirs(os.path.join(root, name), exist_ok=True)

    def path(self, rel: str) -> str:
        return os.path.join(self.root, *rel.split("/"))

    def guid(self, rel: str) -> str:
        if rel not in self.guids:
            self.guids[rel] = uuid.uuid4().hex
        return self.guids[rel]

    def ref(self, rel: str, file_id: int = 100100000, ref_type: int = 3) -> str:
        return f"{{fileID: {file_id}, guid: {self.guid(rel)}, type: {ref_type}}}"

    def write_meta(self, rel: str, importer: dict = None):
        text = f"fileFormatVersion: 2\nguid: {self.guid(rel)}\n"
        if importer:
            text += yaml.safe_dump(importer, sort_keys=False)
        with open(self.path(rel) + ".meta", "w", encoding="utf-8") as f:
            f.write(text)

    def add_file(self, rel: str, content="", meta: bool = True, importer: dict = None) -> str:
        full = self.path(rel)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        mode = "wb" if isinstance(content, bytes) else "w"
        kwargs = {} if isinstance(content, bytes) else {"encoding": "utf-8"}
        with open(full, mode, **kwargs) as f:
            f.write(content)
        if meta:
            self.write_meta(rel, importer)
        return full

    def add_yaml_asset(self, rel: str, documents, meta: bool = True) -> str:
        """``documents`` is a list of ``(class_id, file_id, body)`` tuples."""
        text = _YAML_HEADER
        for class_id, file_id, body in documents:
            text += f"--- !u!{class_id} &{file_id}\n{body.rstrip()}\n"
        return self.add_file(rel, text, meta=meta)

    def add_png(self, rel: str, width: int = 64, height: int = 64, mode: str = "RGB",
                importer: dict = None, seed: int = 0) -> str:
        rng = np.random.default_rng(seed)
        channels = {"RGB": 3, "RGBA": 4}.get(mode)
        shape = (height, width, channels) if channels else (height, width)
        arr = rng.integers(0, 256, size=shape, dtype=np.uint8)
        full = self.path(rel)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        fmt = "PNG" if rel.lower().endswith(".png") else None
        with Image.fromarray(arr) as img:
            img.save(full, format=fmt)
        self.write_meta(rel, importer)
        return full

    def add_shader(self, rel: str) -> str:
        return self.add_file(rel, 'Shader "Test/Lit" { SubShader { Pass { } } }\n')

    def add_material(self, rel: str, shader: str = None, textures: dict = None) -> str:
        shader_ref = self.ref(shader, 4800000, 3) if shader else "{fileID: 0}"
        lines = [
            "Material:",
            f"  m_Name: {os.path.splitext(os.path.basename(rel))[0]}",
            f"  m_Shader: {shader_ref}",
            "  m_SavedProperties:",
            "    serializedVersion: 3",
            "    m_TexEnvs:",
        ]
        for prop, tex in (textures or {}).items():
            tex_ref = self.ref(tex, 2800000, 3) if tex else "{fileID: 0}"
            lines += [
                f"    - {prop}:",
                f"        m_Texture: {tex_ref}",
                "        m_Scale: {x: 1, y: 1}",
                "        m_Offset: {x: 0, y: 0}",
            ]
        if not textures:
            lines[-1] = "    m_TexEnvs: []"
        return self.add_yaml_asset(rel, [(21, 2100000, "\n".join(lines))])

    def add_prefab(self, rel: str, mesh: str = None, materials=(), skinned_mesh: str = None,
                   particle_materials=(), nested=()) -> str:
        docs = [(1, 100, "GameObject:\n  m_Name: Root")]
        if mesh:
            docs.append((33, 200, (
                "MeshFilter:\n"
                "  m_GameObject: {fileID: 100}\n"
                f"  m_Mesh: {self.ref(mesh, 4300000, 3)}"
            )))
        if mesh or materials:
            mats = "\n".join(f"  - {self.ref(m, 2100000, 2)}" for m in materials)
            docs.append((23, 300, (
                "MeshRenderer:\n"
                "  m_GameObject: {fileID: 100}\n"
                + ("  m_Materials:\n" + mats if materials else "  m_Materials: []")
            )))
        if skinned_mesh:
            docs.append((1, 400, "GameObject:\n  m_Name: Skin"))
            mats = "\n".join(f"  - {self.ref(m, 2100000, 2)}" for m in materials)
            docs.append((137, 500, (
                "SkinnedMeshRenderer:\n"
                "  m_GameObject: {fileID: 400}\n"
                f"  m_Mesh: {self.ref(skinned_mesh, 4300000, 3)}\n"
                + ("  m_Materials:\n" + mats if materials else "  m_Materials: []")
            )))
        if particle_materials:
            docs.append((1, 600, "GameObject:\n  m_Name: Sparks"))
            mats = "\n".join(f"  - {self.ref(m, 2100000, 2)}" for m in particle_materials)
            docs.append((199, 700, (
                "ParticleSystemRenderer:\n"
                "  m_GameObject: {fileID: 600}\n"
                "  m_Materials:\n" + mats
            )))
        for i, source in enumerate(nested):
            docs.append((1001, 900 + i, (
                "PrefabInstance:\n"
                f"  m_SourcePrefab: {self.ref(source, 100100000, 3)}"
            )))
        return self.add_yaml_asset(rel, docs)

    def add_scene(self, rel: str, prefabs=()) -> str:
        docs = [(29, 1, "OcclusionCullingSettings:\n  m_ObjectHideFlags: 0")]
        for i, prefab in enumerate(prefabs):
            docs.append((1001, 1000 + i, (
                "PrefabInstance:\n"
                f"  m_SourcePrefab: {self.ref(prefab, 100100000, 3)}"
            )))
        return self.add_yaml_asset(rel, docs)

    def add_animation(self, rel: str, sample_rate: float = 30, start: float = 0.0,
                      stop: float = 2.0, name: str = "Walk") -> str:
        return self.add_yaml_asset(rel, [(74, 7400000, (
            "AnimationClip:\n"
            f"  m_Name: {name}\n"
            f"  m_SampleRate: {sample_rate}\n"
            "  m_AnimationClipSettings:\n"
            f"    m_StartTime: {start}\n"
            f"    m_StopTime: {stop}"
        ))])

    def add_obj(self, rel: str) -> str:
        """A two-triangle mesh with four vertices."""
        text = "v 0 0 0\nv 1 0 0\nv 0 1 0\nv 0 0 1\nf 1 2 3\nf 1 3 4\n"
        return self.add_file(rel, text)

    def add_wav(self, rel: str, seconds: float = 1.0, rate: int = 22050,
                channels: int = 2, importer: dict = None) -> str:
        full = self.path(rel)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        frames = int(seconds * rate)
        with wave.open(full, "wb") as w:
            w.setnchannels(channels)
            w.setsampwidth(2)
            w.setframerate(rate)
            w.writeframes(b"\x00\x00" * channels * frames)
        self.write_meta(rel, importer)
        return full

    def add_graphics_settings(self, render_pipeline: str = None, shaders: dict = None) -> str:
        lines = ["GraphicsSettings:", "  serializedVersion: 13"]
        for slot, shader in (shaders or {}).items():
            lines += [
                f"  {slot}:",
                "    m_Mode: 2",
                f"    m_Shader: {self.ref(shader, 4800000, 3)}",
            ]
        rp = self.ref(render_pipeline, 11400000, 2) if render_pipeline else "{fileID: 0}"
        lines.append(f"  m_CustomRenderPipeline: {rp}")
        return self.add_yaml_asset(
            "ProjectSettings/GraphicsSettings.asset", [(30, 1, "\n".join(lines))], meta=False
        )

    def add_scriptable(self, rel: str, refs=()) -> str:
        body = "MonoBehaviour:\n  m_Name: Settings\n"
        for i, target in enumerate(refs):
            body += f"  m_Ref{i}: {self.ref(target, 11400000, 2)}\n"
        return self.add_yaml_asset(rel, [(114, 11400000, body)])


def build_sample_project(root: str) -> UnityProjectBuilder:
    """Scene -> prefab -> material -> texture chain plus common project files."""
    b = UnityProjectBuilder(root)
    b.add_file("ProjectSettings/ProjectSettings.asset", _YAML_HEADER, meta=False)
    b.add_file("ProjectSettings/ProjectVersion.txt", "m_EditorVersion: 2021.3.0f1\n", meta=False)
    b.add_file("Packages/manifest.json", '{"dependencies": {}}\n', meta=False)
    b.add_file("Assets/Scripts/Player.cs", "public class Player {}\n")
    b.add_file("Assets/Scripts/Game.asmdef", '{"name": "Game"}\n')

    b.add_shader("Assets/Shaders/Lit.shader")
    b.add_png("Assets/Textures/brick.png", 64, 64)
    b.add_png("Assets/Textures/brick_normal.png", 32, 32, seed=1)
    b.add_png("Assets/Textures/unused.png", 16, 16, seed=2)
    b.add_material("Assets/Materials/Brick.mat", shader="Assets/Shaders/Lit.shader",
                   textures={"_MainTex": "Assets/Textures/brick.png",
                             "_BumpMap": "Assets/Textures/brick_normal.png"})
    b.add_obj("Assets/Models/crate.obj")
    b.add_prefab("Assets/Prefabs/Crate.prefab", mesh="Assets/Models/crate.obj",
                 materials=["Assets/Materials/Brick.mat"])
    b.add_scene("Assets/Scenes/Main.unity", prefabs=["Assets/Prefabs/Crate.prefab"])
    b.add_scene("Assets/Scenes/Other.unity")
    return b


@pytest.fixture
def tmp_dir():
    d = tempfile.mkdtemp()
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def default_config():
    return ReproConfig()


@pytest.fixture
def sample_project(tmp_dir):
    root = os.path.join(tmp_dir, "Game")
    os.makedirs(root)
    return build_sample_project(root)
