import re
import unittest
from datetime import datetime, timezone

from uptracklib.config import parse_config_data, process_config
from uptracklib.expression import ExpressionError, ExpressionEvaluator
from uptracklib.filters import expand_template, filter_tags, find_rule, substitute
from uptracklib.model import FilterRule, RawTag, RuleKind

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc).timestamp()


def make_variant(platforms=("linux/amd64", "linux/arm64"), **filters):
    data = {
        "variants": [
            {
                "name": "nginx",
                "namespace": "framjet",
                "platforms": list(platforms),
                "upstream": {"name": "nginx"},
                "filters": filters,
            }
        ]
    }
    return process_config(parse_config_data(data))[0]


def make_tag(name, pushed="2024-05-30T00:00:00Z", platforms=("linux/amd64", "linux/arm64"), **kwargs):
    images = []
    for platform in platforms:
        os_name, arch = platform.split("/")
        images.append(
            {
                "digest": f"sha256:{name}-{arch}",
                "os": os_name,
                "architecture": arch,
                "status": "active",
                "last_pushed": kwargs.pop(f"{arch}_pushed", pushed),
            }
        )
    record = {
        "name": name,
        "tag_status": "active",
        "content_type": "image",
        "tag_last_pushed": pushed,
        "images": images,
    }
    record.update(kwargs)
    return RawTag.from_dict(record)


class TestTemplate(unittest.TestCase):
    def test_numbered_group(self):
        self.assertEqual(substitute(re.compile(r"^v(\d+)$"), "release-$1", "v3"), "release-3")

    def test_named_group_and_whole_match(self):
        regex = re.compile(r"(?P<major>\d+)\.(?P<minor>\d+)")
        self.assertEqual(substitute(regex, "$<minor>.$<major>", "1.27"), "27.1")
        self.assertEqual(substitute(regex, "[$&]", "v1.27-x"), "v[1.27]-x")

    def test_literal_dollar_and_unknown_groups(self):
        regex = re.compile(r"(\d)")
        self.assertEqual(substitute(regex, "$$1", "7"), "$1")
        self.assertEqual(substitute(regex, "$2", "7"), "$2")
        # $12 with a single group is $1 followed by "2"
        self.assertEqual(substitute(regex, "$12", "7"), "72")
        self.assertEqual(substitute(regex, "$<nope>", "7"), "$<nope>")

    def test_every_match_is_replaced(self):
        self.assertEqual(substitute(re.compile("-"), "_", "1-2-3"), "1_2_3")

    def test_expand_template_unmatched_group(self):
        match = re.search(r"a(b)?", "a")
        self.assertEqual(expand_template(match, "[$1]"), "[]")


class TestFindRule(unittest.TestCase):
    def test_first_match_wins(self):
        rules = [
            FilterRule(RuleKind.PATTERN, r"^1\.", regex=re.compile(r"^1\.")),
            FilterRule.exact("1.27"),
        ]
        self.assertIs(find_rule(rules, "1.27"), rules[0])
        self.assertIs(find_rule(list(reversed(rules)), "1.27"), rules[1])
        self.assertIsNone(find_rule(rules, "2.0"))

    def test_pattern_searches_anywhere(self):
        rule = FilterRule(RuleKind.PATTERN, "alpine", regex=re.compile("alpine"))
        self.assertIs(find_rule([rule], "1.27-alpine3.19"), rule)


class TestFilterTags(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.evaluator = ExpressionEvaluator()

    async def test_match_all(self):
        variant = make_variant()
        tags = [make_tag("1.0"), make_tag("latest")]
        matched = await filter_tags(tags, variant, self.evaluator, now=NOW)
        self.assertEqual([t.name for t in matched], ["1.0", "latest"])
        for tag in matched:
            self.assertIsNone(tag.rule)
            self.assertEqual([i.mapped_tag_name for i in tag.images], [tag.name, tag.name])

    async def test_inactive_and_non_image_tags_are_dropped(self):
        variant = make_variant()
        tags = [
            make_tag("1.0", tag_status="inactive"),
            make_tag("1.1", content_type="plugin"),
            make_tag("1.2"),
        ]
        matched = await filter_tags(tags, variant, self.evaluator, now=NOW)
        self.assertEqual([t.name for t in matched], ["1.2"])

    async def test_blank_names_are_dropped(self):
        matched = await filter_tags([make_tag(" "), make_tag("1.0")], make_variant(), self.evaluator, now=NOW)
        self.assertEqual([t.name for t in matched], ["1.0"])

    async def test_out_of_scope_platforms_are_dropped(self):
        variant = make_variant(platforms=["linux/amd64"])
        tag = make_tag("1.0", platforms=("linux/amd64", "linux/arm64", "linux/s390x"))
        matched = await filter_tags([tag], variant, self.evaluator, now=NOW)
        self.assertEqual([i.platform for i in matched[0].images], ["linux/amd64"])

    async def test_limit_releases(self):
        variant = make_variant(limit_releases=2)
        tags = [make_tag("a"), make_tag("b", tag_status="inactive"), make_tag("c"), make_tag("d")]
        matched = await filter_tags(tags, variant, self.evaluator, now=NOW)
        self.assertEqual([t.name for t in matched], ["a", "c"])

    async def test_oldest_tag_limit(self):
        variant = make_variant(oldest_tag_limit="7d")
        tags = [
            make_tag("fresh"),
            make_tag("stale", pushed="2024-01-01T00:00:00Z"),
            # one in-scope platform image is stale
            make_tag("mixed", arm64_pushed="2024-01-01T00:00:00Z"),
            # only the out-of-scope platform is stale
            make_tag("s390x", platforms=("linux/amd64", "linux/arm64", "linux/s390x"), s390x_pushed="2020-01-01T00:00:00Z"),
        ]
        matched = await filter_tags(tags, variant, self.evaluator, now=NOW)
        self.assertEqual([t.name for t in matched], ["fresh", "s390x"])

    async def test_rules_map_names(self):
        variant = make_variant(
            tags=[
                {"name": "stable", "mapped": "lts"},
                {"pattern": r"^v(\d+)$", "mapped": "release-$1"},
                {"pattern": "-alpine$", "expression": "name | replace('-alpine', '') ~ '-' ~ architecture"},
                "latest",
            ]
        )
        tags = [make_tag("stable"), make_tag("v3"), make_tag("1.27-alpine"), make_tag("latest"), make_tag("edge")]
        matched = await filter_tags(tags, variant, self.evaluator, now=NOW)
        self.assertEqual([t.name for t in matched], ["stable", "v3", "1.27-alpine", "latest"])
        mapped = {t.name: [i.mapped_tag_name for i in t.images] for t in matched}
        self.assertEqual(mapped["stable"], ["lts", "lts"])
        self.assertEqual(mapped["v3"], ["release-3", "release-3"])
        self.assertEqual(mapped["1.27-alpine"], ["1.27-amd64", "1.27-arm64"])
        self.assertEqual(mapped["latest"], ["latest", "latest"])
        self.assertEqual(matched[1].rule.kind, RuleKind.PATTERN_MAPPED)
        self.assertIs(matched[1].images[0].rule, matched[1].rule)

    async def test_first_matching_rule_is_used(self):
        variant = make_variant(tags=[{"pattern": "^1"}, {"name": "1.0", "mapped": "one"}])
        matched = await filter_tags([make_tag("1.0")], variant, self.evaluator, now=NOW)
        self.assertEqual(matched[0].rule.kind, RuleKind.PATTERN)
        self.assertEqual(matched[0].images[0].mapped_tag_name, "1.0")

    async def test_failing_expression_raises(self):
        variant = make_variant(tags=[{"name": "1.0", "expression": "''"}])
        with self.assertRaises(ExpressionError):
            await filter_tags([make_tag("1.0")], variant, self.evaluator, now=NOW)

    async def test_matched_image_fields(self):
        matched = await filter_tags([make_tag("1.0")], make_variant(), self.evaluator, now=NOW)
        image = matched[0].images[1]
        self.assertEqual(image.digest, "sha256:1.0-arm64")
        self.assertEqual(image.tag_name, "1.0")
        self.assertEqual((image.os, image.architecture), ("linux", "arm64"))
        self.assertEqual(image.last_pushed, round(datetime(2024, 5, 30, tzinfo=timezone.utc).timestamp()))
        self.assertEqual(matched[0].raw.name, "1.0")


if __name__ == "__main__":
    unittest.main()
