"""Tests for input specification expansion."""

import os
import shutil
import tempfile
import unittest

from ReproKit.core.wildcard import expand_input, expand_inputs


def _touch(root, rel):
    path = os.path.join(root, *rel.split("/"))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(rel)


class TestExpandInput(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        for rel in (
            "Assets/Scripts/Player.cs",
            "Assets/Scripts/Player.cs.meta",
            "Assets/Scripts/AI/Enemy.cs",
            "Assets/Textures/brick.png",
            "Assets/Plugins/native.dll",
            "ProjectSettings/TagManager.asset",
            "ProjectSettings/ProjectVersion.txt",
            "Packages/manifest.json",
        ):
            _touch(self.tmpdir, rel)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_exact_file_yields_only_that_file(self):
        results = set()
        added = expand_input(self.tmpdir, "Assets/Textures/brick.png", results)
        self.assertEqual(results, {"Assets/Textures/brick.png"})
        self.assertEqual(added, 1)

    def test_exact_file_with_backslashes_is_normalized(self):
        results = set()
        expand_input(self.tmpdir, "Assets\\Textures\\brick.png", results)
        self.assertEqual(results, {"Assets/Textures/brick.png"})

    def test_directory_yields_everything_recursively(self):
        results = set()
        expand_input(self.tmpdir, "Assets/Scripts", results)
        self.assertEqual(results, {
            "Assets/Scripts/Player.cs",
            "Assets/Scripts/Player.cs.meta",
            "Assets/Scripts/AI/Enemy.cs",
        })

    def test_pattern_matches_filenames_recursively(self):
        results = set()
        expand_input(self.tmpdir, "Assets/*.cs", results)
        self.assertEqual(results, {"Assets/Scripts/Player.cs", "Assets/Scripts/AI/Enemy.cs"})

    def test_pattern_in_settings_directory(self):
        results = set()
        expand_input(self.tmpdir, "ProjectSettings/*.asset", results)
        self.assertEqual(results, {"ProjectSettings/TagManager.asset"})

    def test_missing_directory_contributes_nothing(self):
        results = {"existing"}
        added = expand_input(self.tmpdir, "Missing/*.cs", results)
        self.assertEqual(added, 0)
        self.assertEqual(results, {"existing"})

    def test_no_match_is_not_an_error(self):
        results = set()
        expand_input(self.tmpdir, "Assets/*.hlsl", results)
        self.assertEqual(results, set())

    def test_empty_path_is_skipped(self):
        results = set()
        self.assertEqual(expand_input(self.tmpdir, "", results), 0)
        self.assertEqual(expand_input(self.tmpdir, "   ", results), 0)
        self.assertEqual(results, set())

    def test_merging_is_deduplicated(self):
        results = expand_inputs(self.tmpdir, ["Assets/Scripts", "Assets/*.cs", "Assets/Scripts/Player.cs"])
        self.assertEqual(len(results), 3)

    def test_repeated_expansion_is_stable(self):
        first = expand_inputs(self.tmpdir, ["Assets"])
        second = expand_inputs(self.tmpdir, ["Assets"])
        self.assertEqual(first, second)
        self.assertEqual(len(first), 5)


if __name__ == "__main__":
    unittest.main()
