import json
import os
import tempfile
import unittest

from uptracklib.config import (
    ConfigError,
    convert_pattern,
    full_image_name,
    load_config,
    load_variants,
    parse_config_data,
    parse_duration,
    process_config,
)
from uptracklib.model import Expression, RuleKind


def _config(**variant):
    base = {
        "namespace": "framjet",
        "name": "nginx",
        "platforms": ["linux/amd64", "linux/arm64"],
        "upstream": {"name": "nginx"},
    }
    base.update(variant)
    return {"variants": [base]}


class TestDuration(unittest.TestCase):
    def test_units(self):
        self.assertEqual(parse_duration("30d"), 30 * 86400)
        self.assertEqual(parse_duration("2 weeks"), 14 * 86400)
        self.assertEqual(parse_duration("1.5h"), 5400)
        self.assertEqual(parse_duration("10m"), 600)
        self.assertAlmostEqual(parse_duration("500ms"), 0.5)
        self.assertEqual(parse_duration("45 seconds"), 45)
        self.assertEqual(parse_duration("1y"), 365.25 * 86400)

    def test_bare_number_is_milliseconds(self):
        self.assertAlmostEqual(parse_duration("2000"), 2)

    def test_invalid(self):
        for value in ("", "soon", "5 fortnights", "d5"):
            with self.assertRaises(ValueError, msg=value):
                parse_duration(value)


class TestConfig(unittest.TestCase):
    def test_full_image_name(self):
        self.assertEqual(full_image_name("library", "nginx"), "nginx")
        self.assertEqual(full_image_name("bitnami", "redis"), "bitnami/redis")

    def test_convert_pattern(self):
        self.assertEqual(convert_pattern(r"^(?<major>\d+)$"), r"^(?P<major>\d+)$")
        # lookbehinds are left alone
        self.assertEqual(convert_pattern(r"(?<=v)\d"), r"(?<=v)\d")
        self.assertEqual(convert_pattern(r"(?<!v)\d"), r"(?<!v)\d")

    def test_process_variant_defaults(self):
        variant = process_config(parse_config_data(_config()))[0]
        self.assertEqual(variant.image_name, "framjet/nginx")
        self.assertEqual(variant.upstream.namespace, "library")
        self.assertEqual(variant.upstream.image_name, "nginx")
        self.assertEqual(variant.platforms, ("linux/amd64", "linux/arm64"))
        self.assertEqual(variant.reference_platform, "linux/amd64")
        self.assertEqual(variant.filters.platforms, frozenset({"linux/amd64", "linux/arm64"}))
        self.assertEqual(variant.filters.rules, ())
        self.assertIsNone(variant.filters.oldest_tag_limit)
        self.assertIsNone(variant.filters.limit_releases)
        self.assertEqual(variant.filters.page_limit, 0)
        self.assertEqual(variant.include, ())
        self.assertIsNone(variant.build_target)

    def test_process_filters(self):
        data = _config(
            filters={
                "oldest_tag_limit": "7d",
                "limit_releases": 5,
                "page_limit": 2,
                "tags": [
                    "latest",
                    {"name": "stable", "mapped": "lts"},
                    {"name": "mainline", "expression": "name | upper", "buildTarget": "main"},
                    {"pattern": r"^\d+$"},
                    {"pattern": r"^v(?<ver>\d+)$", "mapped": "release-$<ver>", "extraTags": ["edge"]},
                    {"pattern": "-alpine$", "expression": "name", "extraLabels": {"flavor": {"expression": "os"}}},
                ],
            },
            buildArgs={"BASE": "debian", "ARCH": {"expression": "architecture"}},
            extraTags=[{"expression": "name ~ '-x'"}],
            include=["../common"],
            buildTarget="runtime",
        )
        variant = process_config(parse_config_data(data))[0]
        self.assertEqual(variant.filters.oldest_tag_limit, 7 * 86400)
        self.assertEqual(variant.filters.limit_releases, 5)
        self.assertEqual(variant.filters.page_limit, 2)

        kinds = [r.kind for r in variant.filters.rules]
        self.assertEqual(
            kinds,
            [
                RuleKind.EXACT,
                RuleKind.EXACT_MAPPED,
                RuleKind.EXACT_EXPRESSION,
                RuleKind.PATTERN,
                RuleKind.PATTERN_MAPPED,
                RuleKind.PATTERN_EXPRESSION,
            ],
        )
        rules = variant.filters.rules
        self.assertEqual(rules[1].mapped, "lts")
        self.assertEqual(rules[2].build_target, "main")
        self.assertIsNotNone(rules[4].regex.search("v12"))
        self.assertEqual(rules[4].extra_tags, ("edge",))
        self.assertEqual(rules[5].extra_labels, {"flavor": Expression("os")})

        self.assertEqual(variant.build_args, {"BASE": "debian", "ARCH": Expression("architecture")})
        self.assertEqual(variant.extra_tags, (Expression("name ~ '-x'"),))
        self.assertEqual(variant.include, ("../common",))
        self.assertEqual(variant.build_target, "runtime")
        self.assertEqual(variant.to_context()["upstream"]["imageName"], "nginx")

    def test_schema_errors_name_the_field(self):
        data = _config(platforms=[])
        data["variants"][0]["unknown"] = True
        with self.assertRaises(ConfigError) as cm:
            parse_config_data(data)
        message = str(cm.exception)
        self.assertIn("variants.0.platforms", message)
        self.assertIn("variants.0.unknown", message)

    def test_duplicate_platforms(self):
        with self.assertRaisesRegex(ConfigError, "unique"):
            parse_config_data(_config(platforms=["linux/amd64", "linux/amd64"]))

    def test_empty_variants(self):
        with self.assertRaises(ConfigError):
            parse_config_data({"variants": []})

    def test_blank_expression(self):
        with self.assertRaises(ConfigError):
            parse_config_data(_config(filters={"tags": [{"name": "x", "expression": "  "}]}))

    def test_invalid_pattern(self):
        with self.assertRaisesRegex(ConfigError, "Invalid tag filter pattern"):
            process_config(parse_config_data(_config(filters={"tags": [{"pattern": "("}]})))

    def test_invalid_duration(self):
        with self.assertRaisesRegex(ConfigError, "oldest_tag_limit"):
            process_config(parse_config_data(_config(filters={"oldest_tag_limit": "someday"})))

    def test_schema_key_allowed(self):
        data = _config()
        data["$schema"] = "https://example.com/uptrack.schema.json"
        self.assertEqual(parse_config_data(data).schema_, "https://example.com/uptrack.schema.json")


class TestLoadConfig(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)

    def _write(self, name, content):
        path = os.path.join(self.tmpdir.name, name)
        with open(path, "w") as f:
            f.write(content)
        return path

    def test_load_json(self):
        path = self._write("uptrack.json", json.dumps(_config()))
        variants = load_variants(path)
        self.assertEqual([v.image_name for v in variants], ["framjet/nginx"])

    def test_load_yaml(self):
        path = self._write(
            "uptrack.yaml",
            """
variants:
  - name: redis
    platforms: [linux/amd64]
    upstream:
      namespace: bitnami
      name: redis
    filters:
      tags:
        - pattern: '^7\\.'
""",
        )
        variant = load_variants(path)[0]
        self.assertEqual(variant.image_name, "redis")
        self.assertEqual(variant.upstream.image_name, "bitnami/redis")
        self.assertEqual(variant.filters.rules[0].kind, RuleKind.PATTERN)

    def test_missing_file(self):
        with self.assertRaisesRegex(ConfigError, "does not exist"):
            load_config(os.path.join(self.tmpdir.name, "missing.json"))

    def test_malformed_json(self):
        path = self._write("uptrack.json", "{not json")
        with self.assertRaisesRegex(ConfigError, "Failed to parse"):
            load_config(path)


if __name__ == "__main__":
    unittest.main()
