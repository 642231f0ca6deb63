#!/usr/bin/env python3
"""
Unit tests for the skopeo-backed registry client. skopeo itself is mocked out;
the image layout it would produce is written by the tests.
"""

import hashlib
import io
import json
import os
import subprocess
import tarfile
import tempfile
import unittest
from unittest import mock

from declcfg_inline_bundles.lib.errors import RegistryError
from declcfg_inline_bundles.lib.image_ref import image_dir_name, repository_name
from declcfg_inline_bundles.lib.registry import SkopeoRegistry

IMAGE = "quay.io/etcd/bundle:v1"
LABELS = {"operators.operatorframework.io.bundle.manifests.v1": "manifests/"}


def _layer(files):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def _write_blob(dest, data):
    digest = hashlib.sha256(data).hexdigest()
    with open(os.path.join(dest, digest), 'wb') as f:
        f.write(data)
    return f"sha256:{digest}"


def _fake_skopeo(layers, labels=None):
    """Return a subprocess.run replacement that lays out an image like ``skopeo copy ... dir:``."""
    calls = []

    def run(cmd, **kwargs):
        calls.append(cmd)
        dest = cmd[-1][len("dir:"):]
        config = json.dumps({"config": {"Labels": labels}}).encode()
        manifest = {
            "schemaVersion": 2,
            "config": {"digest": _write_blob(dest, config)},
            "layers": [{"digest": _write_blob(dest, _layer(files))} for files in layers],
        }
        with open(os.path.join(dest, "manifest.json"), 'w') as f:
            json.dump(manifest, f)
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    run.calls = calls
    return run


class TestSkopeoRegistry(unittest.TestCase):
    """Test cases for SkopeoRegistry."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.cache = os.path.join(self._tmp.name, "cache")
        self.dest = os.path.join(self._tmp.name, "unpacked")
        os.makedirs(self.dest)

    def _patch_run(self, fake):
        patcher = mock.patch("declcfg_inline_bundles.lib.registry.subprocess.run", side_effect=fake)
        self.addCleanup(patcher.stop)
        return patcher.start()

    def test_pull_labels_unpack(self):
        fake = _fake_skopeo([{"manifests/csv.yaml": b"kind: ClusterServiceVersion\n"}], labels=LABELS)
        self._patch_run(fake)
        registry = SkopeoRegistry(cache_dir=self.cache)

        registry.pull(IMAGE)

        cmd = fake.calls[0]
        self.assertEqual(cmd[:3], ["skopeo", "copy", f"docker://{IMAGE}"])
        self.assertTrue(cmd[3].startswith(f"dir:{self.cache}"))
        self.assertEqual(registry.labels(IMAGE), LABELS)

        registry.unpack(IMAGE, self.dest)

        with open(os.path.join(self.dest, "manifests", "csv.yaml"), 'rb') as f:
            self.assertEqual(f.read(), b"kind: ClusterServiceVersion\n")

    def test_pull_is_cached(self):
        fake = _fake_skopeo([{"manifests/csv.yaml": b"csv"}])
        self._patch_run(fake)
        registry = SkopeoRegistry(cache_dir=self.cache)

        registry.pull(IMAGE)
        registry.pull(IMAGE)

        self.assertEqual(len(fake.calls), 1)
        self.assertEqual(os.listdir(self.cache), [image_dir_name(IMAGE)])

    def test_insecure_pull(self):
        fake = _fake_skopeo([])
        self._patch_run(fake)

        SkopeoRegistry(skopeo="/usr/local/bin/skopeo", cache_dir=self.cache, tls_verify=False).pull(IMAGE)

        self.assertEqual(fake.calls[0][:3], ["/usr/local/bin/skopeo", "copy", "--src-tls-verify=false"])

    def test_missing_labels(self):
        self._patch_run(_fake_skopeo([]))
        registry = SkopeoRegistry(cache_dir=self.cache)

        registry.pull(IMAGE)

        self.assertEqual(registry.labels(IMAGE), {})

    def test_failed_pull_reports_stderr(self):
        self._patch_run(lambda cmd, **kwargs: subprocess.CompletedProcess(
            cmd, 1, stdout="", stderr="Error: reading manifest v1: manifest unknown\n"))
        registry = SkopeoRegistry(cache_dir=self.cache)

        with self.assertRaises(RegistryError) as context:
            registry.pull(IMAGE)

        self.assertEqual(str(context.exception), "Error: reading manifest v1: manifest unknown")
        self.assertEqual(os.listdir(self.cache), [])

    def test_skopeo_not_installed(self):
        self._patch_run(FileNotFoundError("skopeo"))
        registry = SkopeoRegistry(cache_dir=self.cache)

        with self.assertRaises(RegistryError) as context:
            registry.pull(IMAGE)

        self.assertIn("not found", str(context.exception))

    def test_labels_of_image_never_pulled(self):
        registry = SkopeoRegistry(cache_dir=self.cache)

        with self.assertRaises(RegistryError):
            registry.labels(IMAGE)

    def test_whiteouts_remove_lower_layer_files(self):
        self._patch_run(_fake_skopeo([
            {"manifests/a.yaml": b"a", "manifests/old.yaml": b"old", "extra/x.yaml": b"x"},
            {"manifests/.wh.old.yaml": b"", "extra/.wh..wh..opq": b"", "extra/y.yaml": b"y"},
        ]))
        registry = SkopeoRegistry(cache_dir=self.cache)

        registry.pull(IMAGE)
        registry.unpack(IMAGE, self.dest)

        self.assertEqual(os.listdir(os.path.join(self.dest, "manifests")), ["a.yaml"])
        self.assertEqual(os.listdir(os.path.join(self.dest, "extra")), ["y.yaml"])

    def test_corrupt_layer(self):
        self._patch_run(_fake_skopeo([{"manifests/a.yaml": b"a"}]))
        registry = SkopeoRegistry(cache_dir=self.cache)
        registry.pull(IMAGE)
        image_dir = registry.image_dir(IMAGE)
        with open(os.path.join(image_dir, "manifest.json")) as f:
            layer = json.load(f)["layers"][0]["digest"].split(":", 1)[1]
        with open(os.path.join(image_dir, layer), 'wb') as f:
            f.write(b"not a tarball")

        with self.assertRaises(RegistryError):
            registry.unpack(IMAGE, self.dest)

    def test_interpreter_without_extraction_filters(self):
        self._patch_run(_fake_skopeo([{"manifests/a.yaml": b"a"}]))
        registry = SkopeoRegistry(cache_dir=self.cache)
        registry.pull(IMAGE)

        with mock.patch.object(tarfile.TarFile, "extractall",
                               side_effect=TypeError("extractall() got an unexpected keyword argument 'filter'")):
            with self.assertRaises(RegistryError) as context:
                registry.unpack(IMAGE, self.dest)

        self.assertIn("'filter'", str(context.exception))

    def test_destroy_removes_only_owned_cache(self):
        owned = SkopeoRegistry()
        given = SkopeoRegistry(cache_dir=self.cache)

        owned.destroy()
        given.destroy()

        self.assertFalse(os.path.exists(owned.cache_dir))
        self.assertTrue(os.path.isdir(self.cache))


class TestImageDirName(unittest.TestCase):
    """Test cases for repository_name and image_dir_name."""

    def test_tag_and_digest_are_dropped(self):
        self.assertEqual(repository_name("quay.io/etcd/bundle:v1@sha256:abcd"), "bundle")

    def test_registry_port_is_not_a_tag(self):
        self.assertEqual(repository_name("localhost:5000/bundle"), "bundle")

    def test_dir_names_differ_per_reference(self):
        v1 = image_dir_name("quay.io/etcd/bundle:v1")
        v2 = image_dir_name("quay.io/etcd/bundle:v2")

        self.assertTrue(v1.startswith("bundle-"))
        self.assertNotEqual(v1, v2)


if __name__ == '__main__':
    unittest.main(verbosity=2)
