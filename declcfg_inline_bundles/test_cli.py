#!/usr/bin/env python3
"""
Unit tests for the declcfg-inline-bundles command line.
"""

import base64
import contextlib
import io
import json
import os
import tempfile
import unittest
from unittest import mock

from declcfg_inline_bundles import cli
from declcfg_inline_bundles._testing import FakeRegistry, bundle, package, read_catalog_file, write_catalog_file
from declcfg_inline_bundles.lib.errors import AggregateError, InlineError

ETCD_V1 = "quay.io/etcd/bundle:v1"
FOO_V1 = "quay.io/foo/bundle:v1"
CSV = b"kind: ClusterServiceVersion\nmetadata:\n  name: etcd.v1\n"


class TestCli(unittest.TestCase):
    """Test cases for the command line entry points."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.catalog = os.path.join(self._tmp.name, "catalog")
        self.etcd_file = os.path.join(self.catalog, "etcd.yaml")
        self.foo_file = os.path.join(self.catalog, "foo.yaml")
        write_catalog_file(self.etcd_file, [
            package("etcd"),
            bundle("etcd.v1", "etcd", image=ETCD_V1, channels={"stable": None}),
        ])
        write_catalog_file(self.foo_file, [
            package("foo"),
            bundle("foo.v1", "foo", image=FOO_V1, channels={"stable": None}),
        ])

        self.config_file = os.path.join(self._tmp.name, "config.json")
        with open(self.config_file, 'w') as f:
            json.dump({"retry_steps": 1, "max_workers": 2}, f)

        logging_patch = mock.patch("declcfg_inline_bundles.cli.setup_logging")
        logging_patch.start()
        self.addCleanup(logging_patch.stop)

    def _snapshot(self):
        return {path: read_catalog_file(path) for path in (self.etcd_file, self.foo_file)}

    def _args(self, *argv):
        args = cli.parse_args(["--config", self.config_file, self.catalog] + list(argv))
        return args, cli.load_config(args)

    def test_parse_args(self):
        args = cli.parse_args(["--delete-non-head-objects", "--insecure", "--max-workers", "8",
                               "catalog", ETCD_V1, FOO_V1])

        self.assertEqual(args.configs_dir, "catalog")
        self.assertEqual(args.bundle_images, [ETCD_V1, FOO_V1])
        self.assertTrue(args.delete_non_head_objects)
        self.assertTrue(args.insecure)
        self.assertEqual(args.max_workers, 8)

    def test_flags_override_config_file(self):
        _, config = self._args("--max-workers", "6", "--insecure", "--skopeo", "/opt/skopeo")

        self.assertEqual(config.get("max_workers"), 6)
        self.assertFalse(config.get("tls_verify"))
        self.assertEqual(config.get("skopeo"), "/opt/skopeo")
        self.assertEqual(config.get("retry_steps"), 1)

    def test_run_removes_backup_on_success(self):
        args, config = self._args(ETCD_V1)
        registry = FakeRegistry(images={ETCD_V1: {"manifests/csv.yaml": CSV}})

        result = cli.run(args, config, registry)

        self.assertEqual(result.inlined, 1)
        self.assertFalse(os.path.exists(cli.backup_path(self.catalog)))
        props = read_catalog_file(self.etcd_file)[1]["properties"]
        self.assertEqual(base64.b64decode(props[-1]["value"]["data"]), CSV)

    def test_run_restores_backup_on_failure(self):
        """A failure in one file rolls back the files that were already rewritten."""
        args, config = self._args()
        registry = FakeRegistry(images={ETCD_V1: {"manifests/csv.yaml": CSV}})
        before = self._snapshot()

        with self.assertRaises(AggregateError):
            cli.run(args, config, registry)

        self.assertEqual(self._snapshot(), before)
        self.assertFalse(os.path.exists(cli.backup_path(self.catalog)))

    def test_run_refuses_existing_backup(self):
        os.makedirs(cli.backup_path(self.catalog))
        args, config = self._args()

        with self.assertRaises(InlineError):
            cli.run(args, config, FakeRegistry())

        self.assertEqual(os.listdir(cli.backup_path(self.catalog)), [])

    def test_main_success(self):
        registry = FakeRegistry(images={
            ETCD_V1: {"manifests/csv.yaml": CSV},
            FOO_V1: {"manifests/csv.yaml": CSV},
        })

        with mock.patch("declcfg_inline_bundles.cli.SkopeoRegistry", return_value=registry) as skopeo:
            cli.main(["--config", self.config_file, "--insecure", self.catalog])

        skopeo.assert_called_once_with(skopeo="skopeo", tls_verify=False)
        self.assertTrue(registry.destroyed)
        self.assertEqual(len(read_catalog_file(self.foo_file)[1]["properties"]), 3)

    def test_main_failure_exits_with_status_1(self):
        registry = FakeRegistry()
        before = self._snapshot()

        with mock.patch("declcfg_inline_bundles.cli.SkopeoRegistry", return_value=registry):
            with self.assertRaises(SystemExit) as context:
                cli.main(["--config", self.config_file, self.catalog])

        self.assertEqual(context.exception.code, 1)
        self.assertTrue(registry.destroyed)
        self.assertEqual(self._snapshot(), before)

    def test_main_missing_catalog_dir(self):
        with self.assertRaises(SystemExit) as context:
            cli.main(["--config", self.config_file, os.path.join(self._tmp.name, "missing")])

        self.assertEqual(context.exception.code, 1)

    def test_main_bad_config(self):
        with open(self.config_file, 'w') as f:
            json.dump({"unknown": True}, f)

        with self.assertRaises(SystemExit) as context:
            cli.main(["--config", self.config_file, self.catalog])

        self.assertEqual(context.exception.code, 1)

    def test_main_bad_error_pattern(self):
        """An invalid permanent error pattern is reported as a configuration error."""
        with open(self.config_file, 'w') as f:
            json.dump({"permanent_error_pattern": "[unclosed"}, f)

        with self.assertLogs(level="CRITICAL") as logs:
            with self.assertRaises(SystemExit) as context:
                cli.main(["--config", self.config_file, self.catalog])

        self.assertEqual(context.exception.code, 1)
        self.assertIn("Error loading configuration", logs.output[0])

    def test_show_config(self):
        out = io.StringIO()

        with contextlib.redirect_stdout(out):
            cli.main(["--config", self.config_file, "--show-config"])

        self.assertIn('"retry_steps": 1', out.getvalue())
        self.assertIn(self.config_file, out.getvalue())


if __name__ == '__main__':
    unittest.main(verbosity=2)
