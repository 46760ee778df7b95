"""Tests for the on-disk project resolver."""

import json
import os
import shutil
import struct
import tempfile
import unittest

from conftest import build_sample_project

from ReproKit.core.records import AudioCompressionFormat, PixelFormat, TextureDimension
from ReproKit.core.resolver import (
    HandleKind, ProjectResolver, read_gltf_animations,
)
from ReproKit.core.unity_yaml import GuidIndex, parse_documents


class TestUnityYaml(unittest.TestCase):
    def test_parse_documents_splits_headers(self):
        text = (
            "%YAML 1.1\n%TAG !u! tag:unity3d.com,2011:\n"
            "--- !u!1 &100\nGameObject:\n  m_Name: Root\n"
            "--- !u!33 &200 stripped\nMeshFilter:\n  m_GameObject: {fileID: 100}\n"
        )
        docs = parse_documents(text)
        self.assertEqual([d.type_name for d in docs], ["GameObject", "MeshFilter"])
        self.assertEqual(docs[0].data["m_Name"], "Root")
        self.assertEqual(docs[1].class_id, 33)
        self.assertEqual(docs[1].file_id, 200)
        self.assertTrue(docs[1].stripped)


class ResolverTestCase(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.builder = build_sample_project(os.path.join(self.tmpdir, "Game"))
        self.resolver = ProjectResolver(self.builder.root)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)


class TestGuidIndex(ResolverTestCase):
    def test_maps_guid_to_path_and_back(self):
        index = GuidIndex(self.builder.root)
        guid = self.builder.guid("Assets/Textures/brick.png")
        self.assertEqual(index.path_for(guid), "Assets/Textures/brick.png")
        self.assertEqual(index.guid_for("Assets/Textures/brick.png"), guid)

    def test_builtin_guids(self):
        index = GuidIndex(self.builder.root)
        self.assertEqual(
            index.path_for("0000000000000000f000000000000000"),
            "Resources/unity_builtin_extra",
        )

    def test_unknown_guid(self):
        self.assertIsNone(GuidIndex(self.builder.root).path_for("ab" * 16))


class TestResolve(ResolverTestCase):
    def test_texture(self):
        handle = self.resolver.resolve("Assets/Textures/brick.png")
        self.assertEqual(handle.kind, HandleKind.TEXTURE)
        self.assertEqual((handle.width, handle.height), (64, 64))
        self.assertEqual(handle.pixel_format, PixelFormat.RGB24)
        self.assertEqual(handle.dimension, TextureDimension.TEX2D)

    def test_texture_shape_from_importer(self):
        self.builder.add_png("Assets/Textures/sky.png", 32, 16,
                             importer={"TextureImporter": {"textureShape": 2}})
        handle = self.resolver.resolve("Assets/Textures/sky.png")
        self.assertEqual(handle.dimension, TextureDimension.CUBE)

    def test_material(self):
        handle = self.resolver.resolve("Assets/Materials/Brick.mat")
        self.assertEqual(handle.kind, HandleKind.MATERIAL)
        self.assertEqual(handle.shader_path, "Assets/Shaders/Lit.shader")
        self.assertEqual(handle.texture_paths, (
            "Assets/Textures/brick.png", "Assets/Textures/brick_normal.png",
        ))

    def test_prefab_renderers(self):
        handle = self.resolver.resolve("Assets/Prefabs/Crate.prefab")
        self.assertEqual(handle.kind, HandleKind.PREFAB)
        self.assertEqual(len(handle.renderers), 1)
        renderer = handle.renderers[0]
        self.assertEqual(renderer.renderer_type, "MeshRenderer")
        self.assertEqual(renderer.filter_mesh_path, "Assets/Models/crate.obj")
        self.assertEqual(renderer.material_paths, ("Assets/Materials/Brick.mat",))

    def test_nested_prefab_renderers_are_included(self):
        self.builder.add_prefab("Assets/Prefabs/Stack.prefab",
                                nested=["Assets/Prefabs/Crate.prefab"])
        handle = self.resolver.resolve("Assets/Prefabs/Stack.prefab")
        self.assertEqual(
            [r.filter_mesh_path for r in handle.renderers], ["Assets/Models/crate.obj"]
        )

    def test_self_referencing_prefab_terminates(self):
        rel = "Assets/Prefabs/Loop.prefab"
        self.builder.add_prefab(rel, nested=[rel])
        handle = self.resolver.resolve(rel)
        self.assertEqual(handle.renderers, ())

    def test_scene_and_generic(self):
        self.assertEqual(self.resolver.resolve("Assets/Scenes/Main.unity").kind, HandleKind.SCENE)
        self.assertEqual(self.resolver.resolve("Assets/Scripts/Player.cs").kind, HandleKind.GENERIC)

    def test_missing_file_is_unresolved(self):
        self.assertIsNone(self.resolver.resolve("Assets/Nope.png"))

    def test_corrupt_texture_is_unresolved(self):
        self.builder.add_file("Assets/Textures/broken.png", b"not a png")
        self.assertIsNone(self.resolver.resolve("Assets/Textures/broken.png"))

    def test_animation_clip(self):
        self.builder.add_animation("Assets/Anim/Walk.anim", sample_rate=30, stop=2.0)
        handle = self.resolver.resolve("Assets/Anim/Walk.anim")
        self.assertEqual(handle.kind, HandleKind.ANIMATION_CLIP)
        self.assertEqual(handle.frame_rate, 30.0)
        self.assertEqual(handle.length, 2.0)
        self.assertEqual(handle.name, "Walk")

    def test_audio_clip(self):
        self.builder.add_wav("Assets/Audio/hit.wav", seconds=1.0, rate=22050, channels=2)
        handle = self.resolver.resolve("Assets/Audio/hit.wav")
        self.assertEqual(handle.kind, HandleKind.AUDIO_CLIP)
        self.assertEqual(handle.channels, 2)
        self.assertEqual(handle.frequency, 22050)
        self.assertAlmostEqual(handle.length, 1.0, places=3)
        self.assertEqual(handle.samples, 22050)

    def test_unload_drops_cached_handle(self):
        first = self.resolver.resolve("Assets/Textures/brick.png")
        self.assertIs(self.resolver.resolve("Assets/Textures/brick.png"), first)
        self.resolver.unload(first)
        self.assertIsNot(self.resolver.resolve("Assets/Textures/brick.png"), first)


class TestAudioImportSettings(ResolverTestCase):
    def setUp(self):
        super().setUp()
        self.builder.add_wav("Assets/Audio/music.wav", importer={"AudioImporter": {
            "defaultSettings": {"loadType": 0, "compressionFormat": 1, "quality": 1},
            "platformSettingOverrides": {
                4: {"compressionFormat": 2, "quality": 0.5},
            },
        }})

    def test_default_settings(self):
        settings = self.resolver.audio_import_settings("Assets/Audio/music.wav", "Standalone")
        self.assertEqual(settings.compression_format, AudioCompressionFormat.VORBIS)
        self.assertEqual(settings.quality, 1.0)

    def test_platform_override(self):
        settings = self.resolver.audio_import_settings("Assets/Audio/music.wav", "iOS")
        self.assertEqual(settings.compression_format, AudioCompressionFormat.ADPCM)
        self.assertEqual(settings.quality, 0.5)


class TestSubAssets(ResolverTestCase):
    def test_obj_meshes(self):
        subs = self.resolver.load_sub_assets("Assets/Models/crate.obj")
        meshes = [s for s in subs if s.kind == HandleKind.MESH]
        self.assertEqual(len(meshes), 1)
        self.assertEqual(meshes[0].vertex_count, 4)
        self.assertEqual(meshes[0].triangle_count, 2)
        self.assertEqual(meshes[0].submesh_count, 1)

    def test_non_container_has_no_sub_assets(self):
        self.assertEqual(self.resolver.load_sub_assets("Assets/Textures/brick.png"), [])

    def test_unreadable_container_yields_nothing(self):
        self.builder.add_file("Assets/Models/broken.fbx", b"\x00garbage")
        self.assertEqual(self.resolver.load_sub_assets("Assets/Models/broken.fbx"), [])

    def test_gltf_with_dangling_accessor_yields_no_animations(self):
        doc = {
            "asset": {"version": "2.0"},
            "accessors": [],
            "animations": [{"samplers": [{"input": 3, "output": 3}], "channels": []}],
        }
        self.builder.add_file("Assets/Models/bad.gltf", json.dumps(doc))
        with self.assertLogs("repro_pipeline.resolver", level="WARNING"):
            subs = self.resolver.load_sub_assets("Assets/Models/bad.gltf")
        self.assertFalse([s for s in subs if s.kind == HandleKind.ANIMATION_CLIP])


class TestGltfAnimations(unittest.TestCase):
    DOC = {
        "asset": {"version": "2.0"},
        "accessors": [
            {"count": 31, "max": [1.0], "min": [0.0], "type": "SCALAR", "componentType": 5126},
            {"count": 61, "max": [2.0], "min": [0.0], "type": "SCALAR", "componentType": 5126},
        ],
        "animations": [
            {"name": "Idle", "samplers": [{"input": 0, "output": 0}], "channels": []},
            {"samplers": [{"input": 0, "output": 0}, {"input": 1, "output": 1}], "channels": []},
        ],
    }

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_gltf_json(self):
        path = os.path.join(self.tmpdir, "anim.gltf")
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.DOC, f)
        clips = read_gltf_animations(path)
        self.assertEqual(clips[0], ("Idle", 30.0, 1.0))
        self.assertEqual(clips[1], ("animation_1", 30.0, 2.0))

    def test_glb_json_chunk(self):
        payload = json.dumps(self.DOC).encode("utf-8")
        payload += b" " * (-len(payload) % 4)
        path = os.path.join(self.tmpdir, "anim.glb")
        with open(path, "wb") as f:
            f.write(struct.pack("<4sII", b"glTF", 2, 12 + 8 + len(payload)))
            f.write(struct.pack("<II", len(payload), 0x4E4F534A))
            f.write(payload)
        names = [c[0] for c in read_gltf_animations(path)]
        self.assertEqual(names, ["Idle", "animation_1"])


class TestResolverDependencies(ResolverTestCase):
    def test_scene_closure(self):
        deps = self.resolver.dependencies_of(["Assets/Scenes/Main.unity"])
        self.assertEqual(deps, {
            "Assets/Scenes/Main.unity",
            "Assets/Prefabs/Crate.prefab",
            "Assets/Models/crate.obj",
            "Assets/Materials/Brick.mat",
            "Assets/Shaders/Lit.shader",
            "Assets/Textures/brick.png",
            "Assets/Textures/brick_normal.png",
        })

    def test_binary_asset_has_no_dependencies(self):
        self.assertEqual(
            self.resolver.dependencies_of(["Assets/Textures/brick.png"]),
            {"Assets/Textures/brick.png"},
        )

    def test_dangling_reference_is_skipped(self):
        self.builder.add_material("Assets/Materials/Ghost.mat", textures={"_MainTex": "Assets/Gone.png"})
        deps = self.resolver.dependencies_of(["Assets/Materials/Ghost.mat"])
        self.assertEqual(deps, {"Assets/Materials/Ghost.mat"})


class TestGraphicsSettings(ResolverTestCase):
    def test_render_pipeline_and_custom_shaders(self):
        self.builder.add_shader("Assets/Shaders/Deferred.shader")
        self.builder.add_scriptable("Assets/Settings/Pipeline.asset")
        self.builder.add_graphics_settings(
            render_pipeline="Assets/Settings/Pipeline.asset",
            shaders={"m_Deferred": "Assets/Shaders/Deferred.shader"},
        )
        assets = ProjectResolver(self.builder.root).graphics_settings_assets()
        self.assertEqual(assets.render_pipeline, "Assets/Settings/Pipeline.asset")
        self.assertEqual(assets.shader_overrides, ("Assets/Shaders/Deferred.shader",))

    def test_missing_graphics_settings(self):
        assets = self.resolver.graphics_settings_assets()
        self.assertIsNone(assets.render_pipeline)
        self.assertEqual(assets.shader_overrides, ())


if __name__ == "__main__":
    unittest.main()
